import logging
import subprocess
from pathlib import Path

import graphviz
from graphviz import Digraph

from sql_diagram import DiagramGraph, TBL_PREFIX, JOINS_EDGE

# --- Configuration ---
TABLE_BORDER_COLOR = '#0d00ff'  # table border
TABLE_NODE_COLOR = '#adffff'   # background table node
TABLE_NODE_SHAPE = 'box'
FONT_SIZE = '10'
TABLE_EDGE_COLOR = '#0099f0'  # table to table
COLUMN_EDGE_COLOR = '#0d00ff'  # table to col
RANKDIR = 'TB'

logger = logging.getLogger('sql_diagram.render')


class DiagramRenderError(RuntimeError):
    """Raised when Graphviz cannot turn the diagram into an image."""


def build_digraph(diagram: DiagramGraph) -> Digraph:
    """Creates a Graphviz digraph with every node, then every edge, in insertion order."""
    dot = Digraph(
        name=diagram.name,
        format='png',
        engine='dot',
        graph_attr={
            'rankdir': RANKDIR,
            'fontsize': FONT_SIZE,
        },
        node_attr={
            'fontname': 'Arial',
            'fontsize': FONT_SIZE,
        },
        edge_attr={
            'fontname': 'Arial',
            'fontsize': FONT_SIZE,
        }
    )

    # First pass: tables get a shape, columns are plain nodes
    for node_id, node_type in diagram.graph.nodes(data='type'):
        if node_type == TBL_PREFIX:
            dot.node(
                node_id,
                shape=TABLE_NODE_SHAPE,
                style='filled',
                fillcolor=TABLE_NODE_COLOR,
                color=TABLE_BORDER_COLOR,
            )
        else:
            dot.node(node_id)

    # Second pass: edges
    for source, target, kind in diagram.edges():
        if kind == JOINS_EDGE:
            dot.edge(source, target, color=TABLE_EDGE_COLOR, penwidth='1.5')
        else:
            dot.edge(source, target, color=COLUMN_EDGE_COLOR, style='dashed', arrowsize='0.8')

    return dot


def to_dot(diagram: DiagramGraph) -> str:
    return build_digraph(diagram).source


def render_diagram(diagram: DiagramGraph, output_file: Path, output_format: str = 'png') -> Path:
    """Renders the diagram with the Graphviz 'dot' executable and returns the image path."""
    dot = build_digraph(diagram)
    logger.info("Rendering graph...")
    try:
        rendered = dot.render(filename=str(output_file), format=output_format, cleanup=True)
    except graphviz.ExecutableNotFound as e:
        raise DiagramRenderError(f"Graphviz is not installed or not on PATH: {e}") from e
    except subprocess.CalledProcessError as e:
        raise DiagramRenderError(f"Graphviz exited with status {e.returncode}: {e.stderr}") from e
    return Path(rendered)
