import pytest
import sys
from pathlib import Path

# Ensure pytest can see the main code
# This is needed if you run pytest from the root project folder
sys.path.insert(0, str(Path(__file__).parent.parent))

from sql_diagram import DiagramGraph, GraphBuilder


@pytest.fixture
def graph():
    """A fresh, empty graph for each test."""
    return DiagramGraph()


@pytest.fixture
def builder():
    return GraphBuilder()


@pytest.fixture
def test_env(tmp_path):
    """
    Creates a temporary test environment for each test.
    - tmp_path: built-in pytest fixture that provides a temporary directory.
    """
    # 1. Create temporary folders for SQL models and the output files
    sql_models_dir = tmp_path / "sql_models"
    sql_models_dir.mkdir()

    output_dir = tmp_path / "output"
    output_dir.mkdir()

    # 2. Stand-in for ConfigManager, so the real config.py and logging setup are not touched
    class ConfigManager:
        sql_models_dir = tmp_path / "sql_models"
        state_file = tmp_path / "output" / "diagram_state.json"
        output_file = tmp_path / "output" / "uml"
        output_format = "png"
        graph_name = "UMLDiagram"
        sql_dialect = None
        sql_file_extension = ".sql"
        normalize_names = False
        source_models_file = tmp_path / "sources.yml"

    yield {
        "tmp_path": tmp_path,
        "config_manager": ConfigManager(),
        "sql_dir": sql_models_dir,
        "state_file": ConfigManager.state_file,
        "sources_file": ConfigManager.source_models_file,
    }
