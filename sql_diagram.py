# -*- coding: utf-8 -*-
import json
import logging
import re
import warnings
from abc import ABC, abstractmethod
from collections import Counter
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import List, Tuple, Optional, Iterable, Any

import networkx as nx
import yaml
from networkx.readwrite import json_graph
from rich.logging import RichHandler
from sqlglot.dialects.dialect import Dialect
from sqlglot.errors import TokenError
from sqlglot.tokens import Token, TokenType

import config

# Disable warning that could happen during work with networkx and JSON
warnings.simplefilter(action='ignore', category=FutureWarning)

TBL_PREFIX = "tbl"
COL_PREFIX = "col"

HAS_EDGE = "has"
JOINS_EDGE = "joins"
EDGE_KINDS = (HAS_EDGE, JOINS_EDGE)


class ConfigManager:
    """
    Manages application configuration and sets up logging.
    Ensures that all required configuration parameters are present.
    """
    def __init__(self):
        self._validate_config()
        self.sql_models_dir = config.SQL_MODELS_DIR
        self.state_file = config.STATE_FILE
        self.output_file = config.OUTPUT_FILE
        self.output_format = getattr(config, 'OUTPUT_FORMAT', 'png')
        self.graph_name = getattr(config, 'GRAPH_NAME', 'UMLDiagram')
        self.sql_dialect = getattr(config, 'SQL_DIALECT', None)
        self.sql_file_extension = getattr(config, 'SQL_FILE_EXTENSION', '.sql')
        self.normalize_names = getattr(config, 'NORMALIZE_NAMES', False)
        self.source_models_file = getattr(config, 'SQL_SOURCE_MODELS', None)

        self.setup_logging()

    def _validate_config(self):
        """Checks for the presence of required attributes in the config module."""
        required = ['SQL_MODELS_DIR', 'STATE_FILE', 'OUTPUT_FILE', 'SQL_FILE_EXTENSION']
        missing = [cfg for cfg in required if not hasattr(config, cfg)]
        if missing:
            raise ValueError(f"Error: Missing required parameters in config.py: {', '.join(missing)}")

    def setup_logging(self):
        """Configures the application's logger."""
        self.state_file.parent.mkdir(parents=True, exist_ok=True)
        self.output_file.parent.mkdir(parents=True, exist_ok=True)
        log_level = getattr(config, 'LOG_LEVEL', 'INFO')
        log_format = getattr(config, 'LOG_FORMAT', '%(asctime)s - %(name)s - %(levelname)s - %(message)s')

        logging.basicConfig(
            level=log_level,
            format=log_format,
            encoding='utf-8',
            handlers=[RichHandler(rich_tracebacks=True, show_time=False, show_path=False)]
        )
        logging.getLogger('sql_diagram')


class NameUtils:
    """A collection of static utility methods for turning raw names into node IDs."""

    _WHITESPACE_RE = re.compile(r"\s+")
    _INVALID_CHAR_RE = re.compile(r"[^A-Za-z0-9]")
    _QUOTED_RE = re.compile(r'^(?:"(.*)"|`(.*)`|\[(.*)\])$', re.DOTALL)

    @classmethod
    def unquote(cls, name: str) -> str:
        """Removes one pair of identifier quotes: "name", `name` or [name]."""
        match = cls._QUOTED_RE.match(name)
        if not match:
            return name
        return next(group for group in match.groups() if group is not None)

    @classmethod
    def normalize_name(cls, name: str, lowercase: bool = False) -> str:
        """Converts the name to lowercase if normalization is enabled."""
        if lowercase and name:
            return name.lower()
        return name

    @classmethod
    def sanitize(cls, name: str, lowercase: bool = False) -> str:
        """
        Generates a valid Graphviz node ID from a raw name.
        Runs of whitespace collapse into one underscore, then every character
        outside [A-Za-z0-9] is replaced by an underscore. Distinct names may collide.
        """
        name = cls.normalize_name(name, lowercase)
        sanitized = cls._WHITESPACE_RE.sub("_", name)
        return cls._INVALID_CHAR_RE.sub("_", sanitized)


class StatementKind(Enum):
    SCHEMA_DEFINITION = "schema_definition"
    RELATIONSHIP_QUERY = "relationship_query"
    UNRECOGNIZED = "unrecognized"


def classify_statement(statement: str) -> StatementKind:
    """Case-insensitive prefix match on the first keyword of the statement."""
    head = statement.lstrip().upper()
    if head.startswith("CREATE"):
        return StatementKind.SCHEMA_DEFINITION
    if head.startswith("SELECT"):
        return StatementKind.RELATIONSHIP_QUERY
    return StatementKind.UNRECOGNIZED


@dataclass(frozen=True)
class TableFact:
    """A table name with its raw column declarations, in declaration order."""
    name: str
    columns: Tuple[str, ...] = ()


def split_statements(sql: str, dialect: Optional[str] = None) -> List[str]:
    """Splits SQL text into raw statements on top-level semicolons. Semicolons are kept."""
    tokens = Dialect.get_or_raise(dialect).tokenize(sql)
    statements = []
    start = None
    for token in tokens:
        if token.token_type == TokenType.SEMICOLON:
            if start is not None:
                statements.append(sql[start:token.end + 1].strip())
                start = None
        elif start is None:
            start = token.start

    if start is not None:
        tail = sql[start:].strip()
        if tail:
            statements.append(tail)
    return statements


class StatementExtractor(ABC):
    """Abstract base class for statement extractors."""
    def __init__(self):
        self.logger = logging.getLogger('sql_diagram.parser')

    @abstractmethod
    def extract(self, statement: str) -> Any:
        """Extracts structural facts from a single statement."""
        pass


class SchemaExtractor(StatementExtractor):
    """Parses CREATE TABLE statements into a TableFact."""

    _CREATE_TABLE_RE = re.compile(
        r"^\s*CREATE\s+(?:(?:GLOBAL|LOCAL)\s+)?(?:TEMP(?:ORARY)?\s+)?TABLE\b\s*(?:IF\s+NOT\s+EXISTS\b\s*)?",
        re.IGNORECASE
    )
    _CREATE_RE = re.compile(r"^\s*CREATE\b", re.IGNORECASE)

    def extract(self, statement: str) -> TableFact:
        name_part, paren, body = statement.partition("(")
        table_name = self._extract_table_name(name_part)
        columns = self._split_declarations(body.strip().rstrip(";")) if paren else []
        return TableFact(name=table_name, columns=tuple(columns))

    def _extract_table_name(self, name_part: str) -> str:
        """Removes the leading 'CREATE [TEMP] TABLE [IF NOT EXISTS]' phrase."""
        name, replaced = self._CREATE_TABLE_RE.subn("", name_part, count=1)
        if not replaced:
            name = self._CREATE_RE.sub("", name_part, count=1)
        return NameUtils.unquote(name.strip().rstrip(";").strip())

    @staticmethod
    def _split_declarations(body: str) -> List[str]:
        """
        Splits a column list on top-level commas. Commas inside nested parentheses,
        quotes or comments stay out of the split, e.g. 'price DECIMAL(10,2)'.
        Comments are dropped. Scanning stops at the parenthesis closing the column list.
        """
        parts = []
        current = []
        depth = 0
        quote_char = None

        i = 0
        while i < len(body):
            char = body[i]
            if quote_char:
                if char == quote_char:
                    quote_char = None
            elif char in ("'", '"', '`'):
                quote_char = char
            elif body.startswith('--', i):
                end = body.find('\n', i)
                i = len(body) if end == -1 else end
                continue
            elif body.startswith('/*', i):
                end = body.find('*/', i + 2)
                i = len(body) if end == -1 else end + 2
                continue
            elif char == '(':
                depth += 1
            elif char == ')':
                if depth == 0:
                    break
                depth -= 1
            elif char == ',' and depth == 0:
                parts.append(''.join(current))
                current = []
                i += 1
                continue
            current.append(char)
            i += 1

        parts.append(''.join(current))
        return [part.strip() for part in parts if part.strip()]


class RelationshipExtractor(StatementExtractor):
    """Finds the tables a SELECT refers to after FROM and JOIN, in text order."""

    TABLE_KEYWORDS = {TokenType.FROM, TokenType.JOIN}
    TABLE_TOKENS = {TokenType.VAR, TokenType.IDENTIFIER}
    # Identifier quotes the default dialect tokenizes as separate symbols
    BARE_QUOTES = {"`", "["}

    def __init__(self, dialect: Optional[str] = None):
        super().__init__()
        self.dialect = Dialect.get_or_raise(dialect)

    def extract(self, statement: str) -> List[str]:
        try:
            tokens = self.dialect.tokenize(statement)
        except TokenError as e:
            self.logger.warning(f"Could not tokenize query, no relationships taken from it: {e}")
            return []

        tables = []
        depth = 0
        for index, token in enumerate(tokens):
            if token.token_type == TokenType.L_PAREN:
                depth += 1
            elif token.token_type == TokenType.R_PAREN:
                depth -= 1
            # Only the outermost query; FROM inside EXTRACT(...) or a subquery is ignored
            elif depth == 0 and token.token_type in self.TABLE_KEYWORDS:
                table = self._table_after(tokens, index)
                if table:
                    tables.append(table)
        return tables

    def _table_after(self, tokens: List[Token], index: int) -> Optional[str]:
        """Returns the identifier following tokens[index], or None for a subquery or other token."""
        position = index + 1
        if position < len(tokens) and tokens[position].text in self.BARE_QUOTES:
            position += 1
        if position < len(tokens) and tokens[position].token_type in self.TABLE_TOKENS:
            return NameUtils.unquote(tokens[position].text)
        return None


class DiagramGraph:
    """
    Accumulating graph of table and column nodes.
    Node IDs are sanitized names. Edges are keyed by kind ('has' or 'joins'),
    so the same pair of nodes holds at most one edge of each kind.
    """

    def __init__(self, name: str = "UMLDiagram", normalize_names: bool = False):
        self.graph = nx.MultiDiGraph(name=name, normalize_names=normalize_names)
        self.normalize_names = normalize_names
        self.logger = logging.getLogger('sql_diagram.graph')

    @property
    def name(self) -> str:
        return self.graph.name

    def node_id(self, name: str) -> str:
        return NameUtils.sanitize(name, self.normalize_names)

    def _add_node(self, name: str, node_type: str) -> str:
        node_id = self.node_id(name)
        # First definition wins: a column named like an existing table stays a table
        if not self.graph.has_node(node_id):
            self.graph.add_node(node_id, type=node_type, label=name)
        return node_id

    def add_table_node(self, name: str) -> str:
        return self._add_node(name, TBL_PREFIX)

    def add_column_node(self, name: str) -> str:
        return self._add_node(name, COL_PREFIX)

    def add_edge(self, source: str, target: str, kind: str):
        """Adds a directed edge between two existing nodes. Re-adding the same edge is a no-op."""
        if kind not in EDGE_KINDS:
            raise ValueError(f"Unknown edge kind: {kind}")
        source, target = self.node_id(source), self.node_id(target)
        for node_id in (source, target):
            if not self.graph.has_node(node_id):
                raise ValueError(f"Cannot add '{kind}' edge {source} -> {target}: node '{node_id}' does not exist")
        if not self.graph.has_edge(source, target, key=kind):
            self.graph.add_edge(source, target, key=kind, type=kind, index=self.graph.number_of_edges())

    def add_table_fact(self, fact: TableFact):
        """Adds a table node and, in declaration order, its column nodes with 'has' edges."""
        table_id = self.add_table_node(fact.name)
        for column in fact.columns:
            column_id = self.add_column_node(column)
            self.add_edge(table_id, column_id, HAS_EDGE)

    def add_join_fact(self, tables: List[str]):
        """Adds a 'joins' edge between each pair of consecutively referenced tables."""
        for source, target in zip(tables, tables[1:]):
            self.add_edge(self.add_table_node(source), self.add_table_node(target), JOINS_EDGE)

    def has_edge(self, source: str, target: str, kind: str) -> bool:
        return self.graph.has_edge(self.node_id(source), self.node_id(target), key=kind)

    def tables(self) -> List[str]:
        return [node for node, node_type in self.graph.nodes(data='type') if node_type == TBL_PREFIX]

    def columns(self) -> List[str]:
        return [node for node, node_type in self.graph.nodes(data='type') if node_type == COL_PREFIX]

    def edges(self, kind: Optional[str] = None) -> List[Tuple[str, str, str]]:
        """Returns (source, target, kind) triples in insertion order."""
        # networkx groups edges by source node, the stored index keeps the global order
        ordered = sorted(self.graph.edges(keys=True, data='index', default=0), key=lambda edge: edge[3])
        return [(u, v, k) for u, v, k, _ in ordered if kind is None or k == kind]

    def number_of_nodes(self) -> int:
        return self.graph.number_of_nodes()

    def number_of_edges(self) -> int:
        return self.graph.number_of_edges()

    def __contains__(self, name: str) -> bool:
        return self.graph.has_node(self.node_id(name))

    def save_state(self, state_file: Path):
        """Saves the graph to a JSON file."""
        self.logger.info(f"Saving graph state to {state_file}...")
        graph_data = json_graph.node_link_data(self.graph, edges="links")
        with state_file.open('w', encoding='utf-8') as f:
            json.dump(graph_data, f, indent=2, ensure_ascii=False)
        self.logger.info("Graph state saved successfully.")

    @classmethod
    def load_state(cls, state_file: Path) -> Optional['DiagramGraph']:
        """Loads a graph from a JSON file."""
        logger = logging.getLogger('sql_diagram.graph')
        if not state_file.exists():
            logger.info(f"State file {state_file} not found. No previous state.")
            return None

        logger.info(f"Loading graph state from {state_file}...")
        try:
            with state_file.open('r', encoding='utf-8') as f:
                data = json.load(f)
            graph = json_graph.node_link_graph(data, directed=True, multigraph=True, edges="links")
        except (OSError, ValueError, KeyError) as e:
            logger.error(f"Failed to load graph state: {e}", exc_info=True)
            return None

        instance = cls(name=graph.name, normalize_names=graph.graph.get("normalize_names", False))
        instance.graph = graph
        logger.info(f"Graph state loaded. Nodes: {instance.number_of_nodes()}, Edges: {instance.number_of_edges()}.")
        return instance


class GraphBuilder:
    """Classifies each statement, extracts its facts and applies them to a DiagramGraph."""

    def __init__(self, dialect: Optional[str] = None, graph_name: str = "UMLDiagram",
                 normalize_names: bool = False):
        self.graph_name = graph_name
        self.normalize_names = normalize_names
        self.schema_extractor = SchemaExtractor()
        self.relationship_extractor = RelationshipExtractor(dialect)
        self.stats = Counter()
        self.logger = logging.getLogger('sql_diagram.builder')

    def build(self, statements: Iterable[str], graph: Optional[DiagramGraph] = None) -> DiagramGraph:
        """Applies all statements in order to the given graph (or a new one) and returns it."""
        if graph is None:
            graph = DiagramGraph(name=self.graph_name, normalize_names=self.normalize_names)
        self.stats = Counter()

        self.logger.info("--- Building diagram graph ---")
        for statement in statements:
            self.apply_statement(graph, statement)

        self.logger.info(
            f"Graph built. Nodes: {graph.number_of_nodes()}, Edges: {graph.number_of_edges()}. "
            f"Tables: {self.stats['tables']}, queries: {self.stats['joins']}, "
            f"skipped: {self.stats['skipped']}, degraded: {self.stats['degraded']}."
        )
        return graph

    def apply_statement(self, graph: DiagramGraph, statement: str) -> StatementKind:
        kind = classify_statement(statement)
        if kind is StatementKind.SCHEMA_DEFINITION:
            self.apply_table_fact(graph, self.schema_extractor.extract(statement))
        elif kind is StatementKind.RELATIONSHIP_QUERY:
            self.apply_join_fact(graph, self.relationship_extractor.extract(statement))
        else:
            self.stats['skipped'] += 1
            self.logger.debug(f"Skipping unrecognized statement: {statement.strip()[:60]!r}")
        return kind

    def apply_table_fact(self, graph: DiagramGraph, fact: TableFact):
        if not fact.name:
            self.stats['degraded'] += 1
            self.logger.warning("CREATE statement without a table name, skipped.")
            return
        if not fact.columns:
            self.stats['degraded'] += 1
            self.logger.warning(f"No columns found for table '{fact.name}'.")
        graph.add_table_fact(fact)
        self.stats['tables'] += 1

    def apply_join_fact(self, graph: DiagramGraph, tables: List[str]):
        if len(tables) < 2:
            self.stats['degraded'] += 1
            self.logger.warning(f"Query references {len(tables)} table(s), no relationship added.")
            return
        graph.add_join_fact(tables)
        self.stats['joins'] += 1


class ModelParser(ABC):
    """Abstract base class for model parsers."""
    def __init__(self, cfg: ConfigManager):
        self.config = cfg
        self.logger = logging.getLogger('sql_diagram.parser')

    @abstractmethod
    def parse(self) -> List[Any]:
        """Parses models and returns a list of model definitions."""
        pass


class SourceModelParser(ModelParser):
    """Parses source tables defined in a YAML file (table name -> column declarations)."""

    def parse(self) -> List[TableFact]:
        self.logger.info("--- Phase 1: Parsing source models ---")
        if not self.config.source_models_file or not self.config.source_models_file.is_file():
            self.logger.info("Source models file not provided or not found. Skipping.")
            return []

        try:
            with self.config.source_models_file.open('r', encoding='utf-8') as file:
                source_definitions = yaml.safe_load(file) or {}
        except (OSError, yaml.YAMLError) as e:
            self.logger.error(f"Failed to load or parse sources file: {e}")
            return []

        if not isinstance(source_definitions, dict):
            self.logger.error("Sources file must map table names to lists of columns.")
            return []

        self.logger.info(f"Loaded source tables: {list(source_definitions.keys())}")
        return [
            TableFact(name=str(table), columns=tuple(str(col) for col in (columns or [])))
            for table, columns in source_definitions.items()
        ]


class SqlModelParser(ModelParser):
    """Reads SQL files and splits them into statements."""

    def parse(self) -> List[str]:
        """Finds all SQL files in the configured directory and returns their statements in order."""
        self.logger.info("--- Phase 2: Reading SQL models ---")
        sql_files = self._find_sql_files()
        if not sql_files:
            self.logger.warning("No SQL files found for analysis.")
            return []

        statements = []
        total_files = len(sql_files)
        for processed_files, file_path in enumerate(sql_files, start=1):
            file_statements = self._read_sql_file(file_path)
            self.logger.info(f"[{processed_files}/{total_files}] Read: {file_path} ({len(file_statements)} statements)")
            statements.extend(file_statements)

        self.logger.info(f"Read {len(statements)} statements from {total_files} files.")
        return statements

    def _find_sql_files(self) -> List[Path]:
        """Recursively finds all SQL files in the directory."""
        self.logger.info(f"Searching for SQL files in: {self.config.sql_models_dir}")
        sql_files = sorted(self.config.sql_models_dir.rglob(f"*{self.config.sql_file_extension}"))
        self.logger.info(f"Found {len(sql_files)} SQL files.")
        return sql_files

    def _read_sql_file(self, file_path: Path) -> List[str]:
        try:
            sql_content = file_path.read_text(encoding='utf-8')
            return split_statements(sql_content, self.config.sql_dialect)
        except (OSError, TokenError) as e:
            self.logger.error(f"Error reading or splitting file {file_path}: {e}")
            return []
