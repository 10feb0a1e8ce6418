# -*- coding: utf-8 -*-
import logging
import sys

from draw_graphviz import render_diagram
from sql_diagram import ConfigManager, DiagramGraph, GraphBuilder, SourceModelParser, SqlModelParser


class SQLDiagram:
    """Orchestrates reading SQL, building the diagram graph and rendering it."""

    def __init__(self, config=None):
        self.config = config or ConfigManager()
        self.logger = logging.getLogger('sql_diagram')
        self.source_parser = SourceModelParser(self.config)
        self.sql_parser = SqlModelParser(self.config)
        self.builder = GraphBuilder(
            dialect=self.config.sql_dialect,
            graph_name=self.config.graph_name,
            normalize_names=self.config.normalize_names,
        )

    def run(self) -> DiagramGraph:
        """Executes the full pipeline and returns the finished graph."""
        self.logger.info("=" * 50)
        self.logger.info("Starting SQL diagram builder...")
        self.logger.info(f"Models directory: {self.config.sql_models_dir}")
        self.logger.info(f"State file: {self.config.state_file}")
        self.logger.info(f"SQL dialect: {self.config.sql_dialect}")
        self.logger.info("=" * 50)

        graph = DiagramGraph(name=self.config.graph_name, normalize_names=self.config.normalize_names)

        # 1. Tables known up front
        for fact in self.source_parser.parse():
            graph.add_table_fact(fact)

        # 2. Statements from SQL files, applied in order
        statements = self.sql_parser.parse()
        self.builder.build(statements, graph)

        # 3. Save state and render
        graph.save_state(self.config.state_file)
        image_path = render_diagram(graph, self.config.output_file, self.config.output_format)

        self.logger.info(f"UML diagram saved as '{image_path}'")
        return graph


def main():
    try:
        SQLDiagram().run()
    except Exception as e:
        logging.getLogger('sql_diagram').critical(f"A critical error occurred: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
