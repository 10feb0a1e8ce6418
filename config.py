# config.py
from pathlib import Path

# Folder with the SQL scripts to draw. Can be absolute or relative to where the
# script is executed. All files with SQL_FILE_EXTENSION are read recursively.
SQL_MODELS_DIR = Path("./sql_models")

# Optional YAML file with tables that are known up front (table: [columns])
SQL_SOURCE_MODELS = Path("sources.yml")

# File to save the diagram graph state (node-link JSON)
STATE_FILE = Path("./output/diagram_state.json")

# Rendered diagram, without extension. Graphviz appends OUTPUT_FORMAT.
OUTPUT_FILE = Path("./output/uml")
OUTPUT_FORMAT = "png"
GRAPH_NAME = "UMLDiagram"

# SQL dialect used by the tokenizer
# Examples: "postgres", "mysql", "snowflake", "bigquery", "clickhouse"
SQL_DIALECT = None

# File extension for SQL model files
SQL_FILE_EXTENSION = ".sql"

# Lowercase table and column names before turning them into node ids
NORMALIZE_NAMES = False

# Logging settings
LOG_LEVEL = "INFO"
LOG_FORMAT = '%(levelname)s - %(message)s'
