import json

import pytest

from sql_diagram import COL_PREFIX, HAS_EDGE, JOINS_EDGE, TBL_PREFIX, DiagramGraph, TableFact


def snapshot(graph: DiagramGraph):
    return list(graph.graph.nodes(data=True)), graph.edges()


def test_add_nodes_sanitizes_and_is_idempotent(graph):
    assert graph.add_table_node("user") == "user"
    assert graph.add_column_node("name VARCHAR(50)") == "name_VARCHAR_50_"
    graph.add_column_node("name VARCHAR(50)")
    graph.add_table_node("user")
    assert graph.tables() == ["user"]
    assert graph.columns() == ["name_VARCHAR_50_"]
    assert graph.graph.nodes["name_VARCHAR_50_"] == {"type": COL_PREFIX, "label": "name VARCHAR(50)"}


def test_first_node_kind_wins(graph):
    graph.add_table_node("users")
    graph.add_column_node("users")
    assert graph.graph.nodes["users"]["type"] == TBL_PREFIX
    assert graph.number_of_nodes() == 1


def test_add_edge_requires_existing_nodes(graph):
    graph.add_table_node("user")
    with pytest.raises(ValueError, match="does not exist"):
        graph.add_edge("user", "id_INT", HAS_EDGE)
    assert graph.number_of_edges() == 0
    assert graph.number_of_nodes() == 1


def test_add_edge_rejects_unknown_kind(graph):
    graph.add_table_node("a")
    graph.add_table_node("b")
    with pytest.raises(ValueError, match="Unknown edge kind"):
        graph.add_edge("a", "b", "references")


def test_duplicate_edges_collapse(graph):
    graph.add_table_node("a")
    graph.add_table_node("b")
    graph.add_edge("a", "b", JOINS_EDGE)
    graph.add_edge("a", "b", JOINS_EDGE)
    assert graph.edges() == [("a", "b", JOINS_EDGE)]


def test_edges_of_different_kinds_coexist(graph):
    graph.add_table_node("a")
    graph.add_column_node("b")
    graph.add_edge("a", "b", HAS_EDGE)
    graph.add_edge("a", "b", JOINS_EDGE)
    assert graph.edges() == [("a", "b", HAS_EDGE), ("a", "b", JOINS_EDGE)]


def test_table_fact_adds_columns_in_order(graph):
    graph.add_table_fact(TableFact("user", ("id INT", "name VARCHAR(50)", "email VARCHAR(100)")))
    assert graph.tables() == ["user"]
    assert graph.columns() == ["id_INT", "name_VARCHAR_50_", "email_VARCHAR_100_"]
    assert graph.edges(HAS_EDGE) == [
        ("user", "id_INT", HAS_EDGE),
        ("user", "name_VARCHAR_50_", HAS_EDGE),
        ("user", "email_VARCHAR_100_", HAS_EDGE),
    ]


def test_table_fact_is_idempotent(graph):
    fact = TableFact("user", ("id INT", "name VARCHAR(50)"))
    graph.add_table_fact(fact)
    once = snapshot(graph)
    graph.add_table_fact(fact)
    assert snapshot(graph) == once


def test_shared_columns_become_one_node(graph):
    graph.add_table_fact(TableFact("user", ("id INT",)))
    graph.add_table_fact(TableFact("posts", ("id INT",)))
    assert graph.columns() == ["id_INT"]
    assert graph.edges() == [("user", "id_INT", HAS_EDGE), ("posts", "id_INT", HAS_EDGE)]


def test_join_fact_links_consecutive_tables_only(graph):
    graph.add_join_fact(["A", "B", "C"])
    assert graph.edges() == [("A", "B", JOINS_EDGE), ("B", "C", JOINS_EDGE)]
    assert not graph.has_edge("A", "C", JOINS_EDGE)


def test_edges_keep_global_insertion_order(graph):
    graph.add_table_fact(TableFact("a", ("x INT",)))
    graph.add_table_fact(TableFact("b", ("y INT",)))
    graph.add_join_fact(["a", "b"])
    assert graph.edges() == [
        ("a", "x_INT", HAS_EDGE),
        ("b", "y_INT", HAS_EDGE),
        ("a", "b", JOINS_EDGE),
    ]


@pytest.mark.parametrize("tables", [[], ["users"]])
def test_short_join_fact_adds_nothing(graph, tables):
    graph.add_join_fact(tables)
    assert graph.number_of_nodes() == 0
    assert graph.number_of_edges() == 0


def test_normalize_names():
    graph = DiagramGraph(normalize_names=True)
    graph.add_join_fact(["Users", "USERS_posts"])
    assert "users" in graph
    assert graph.edges() == [("users", "users_posts", JOINS_EDGE)]


def test_save_and_load_state(graph, tmp_path):
    graph.add_table_fact(TableFact("user", ("id INT",)))
    graph.add_join_fact(["user", "posts"])
    state_file = tmp_path / "state.json"

    graph.save_state(state_file)
    data = json.loads(state_file.read_text(encoding="utf-8"))
    assert [node["id"] for node in data["nodes"]] == ["user", "id_INT", "posts"]
    assert [(link["source"], link["target"], link["type"]) for link in data["links"]] == [
        ("user", "id_INT", HAS_EDGE),
        ("user", "posts", JOINS_EDGE),
    ]

    loaded = DiagramGraph.load_state(state_file)
    assert loaded.name == "UMLDiagram"
    assert snapshot(loaded) == snapshot(graph)


def test_load_missing_state(tmp_path):
    assert DiagramGraph.load_state(tmp_path / "missing.json") is None


def test_load_broken_state(tmp_path):
    state_file = tmp_path / "state.json"
    state_file.write_text("{not json", encoding="utf-8")
    assert DiagramGraph.load_state(state_file) is None


def test_load_state_keeps_name_normalization(tmp_path):
    graph = DiagramGraph(normalize_names=True)
    graph.add_table_fact(TableFact("Users", ("ID INT",)))
    state_file = tmp_path / "state.json"
    graph.save_state(state_file)

    loaded = DiagramGraph.load_state(state_file)

    assert loaded.normalize_names is True
    assert "USERS" in loaded
    assert loaded.has_edge("Users", "id int", HAS_EDGE)
    loaded.add_table_node("USERS")
    assert loaded.tables() == ["users"]
