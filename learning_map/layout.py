"""
Layered layout of the learning map.

Nodes are assigned to layers along the flow direction, ordered inside each layer to keep
edges short and uncrossed, and finally placed using their measured pixel sizes.
Layered layouts are not incremental: every topology change re-submits the whole graph,
with the previous positions passed as hints so already placed nodes keep their relative order.
"""

import asyncio
import logging
from collections.abc import Mapping, Sequence
from enum import StrEnum
from typing import Literal, get_args

import networkx as nx
from pydantic import BaseModel

from learning_map.errors import LayoutError
from learning_map.graph import GraphModel
from learning_map.models import LayoutEdge, LayoutNode, Position

logger = logging.getLogger(__name__)

type Direction = Literal['DOWN', 'UP', 'RIGHT', 'LEFT']
DIRECTIONS: tuple[str, ...] = get_args(Direction.__value__)


class LayoutOptions(BaseModel):
    """Spacing of the layered layout, in pixels"""

    layer_spacing: float = 150
    node_spacing: float = 100
    padding: float = 50


class LayoutOutcome(StrEnum):
    ACCEPTED = 'accepted'
    INCOMPLETE = 'incomplete'
    STALE = 'stale'


def _build_graph(nodes: Sequence[LayoutNode], edges: Sequence[LayoutEdge]) -> nx.DiGraph:
    graph = nx.DiGraph()
    for node in nodes:
        if node.id in graph:
            raise LayoutError(f'Duplicate layout node {node.id!r}')
        if node.width < 0 or node.height < 0:
            raise LayoutError(f'Node {node.id!r} has negative size')
        graph.add_node(node.id)

    for edge in edges:
        if edge.source not in graph or edge.target not in graph:
            raise LayoutError(f'Edge {edge.id!r} references an unknown node')
        if edge.source == edge.target:
            raise LayoutError(f'Edge {edge.id!r} is a self-loop')
        graph.add_edge(edge.source, edge.target)

    return graph


def _assign_layers(graph: nx.DiGraph, model_order: dict[str, int]) -> list[list[str]]:
    """Longest-path layering, each layer listed in model order"""
    try:
        topological = list(nx.lexicographical_topological_sort(graph, key=model_order.get))
    except nx.NetworkXUnfeasible as e:
        raise LayoutError('Layout graph contains a cycle') from e

    depth: dict[str, int] = {}
    for node_id in topological:
        depth[node_id] = max((depth[p] + 1 for p in graph.predecessors(node_id)), default=0)

    layers: list[list[str]] = [[] for _ in range(max(depth.values(), default=-1) + 1)]
    for node_id in sorted(depth, key=model_order.get):
        layers[depth[node_id]].append(node_id)
    return layers


def _order_layers(
    graph: nx.DiGraph,
    layers: list[list[str]],
    model_order: dict[str, int],
    hint_cross: Mapping[str, float],
) -> None:
    """
    Order nodes inside each layer by the barycenter of their predecessors.

    Hinted nodes keep their previous relative order: they are sorted by hint among the
    slots they occupy, new nodes take the remaining slots.
    """
    rank: dict[str, int] = {}
    for members in layers:

        def _barycenter(node_id: str) -> float:
            preds = list(graph.predecessors(node_id))
            if not preds:
                return float(model_order[node_id])
            return sum(rank[p] for p in preds) / len(preds)

        members.sort(key=lambda n: (_barycenter(n), model_order[n]))

        slots = [i for i, node_id in enumerate(members) if node_id in hint_cross]
        hinted = sorted(
            (members[i] for i in slots), key=lambda n: (hint_cross[n], model_order[n])
        )
        for slot, node_id in zip(slots, hinted):
            members[slot] = node_id

        for i, node_id in enumerate(members):
            rank[node_id] = i


def compute_layout(
    nodes: Sequence[LayoutNode],
    edges: Sequence[LayoutEdge],
    direction: Direction = 'DOWN',
    hints: Mapping[str, Position] | None = None,
    options: LayoutOptions | None = None,
) -> dict[str, Position] | None:
    """
    Compute positions for every node from its measured size.

    Parameters
    ----------
    nodes : Sequence[LayoutNode]
        Nodes with rendered width and height
    edges : Sequence[LayoutEdge]
        Directed edges between the nodes
    direction : Direction, default='DOWN'
        Flow direction of the layers
    hints : Mapping[str, Position] | None
        Previous positions, used to keep the order of already placed nodes
    options : LayoutOptions | None
        Spacing configuration

    Returns
    -------
    dict[str, Position] | None
        Top-left position for every node, or None when any node is not measured yet

    Raises
    ------
    LayoutError
        On unknown direction, dangling or self-loop edges, negative sizes or cycles
    """
    if any(node.width is None or node.height is None for node in nodes):
        return None
    if direction not in DIRECTIONS:
        raise LayoutError(f'Unknown layout direction {direction!r}')

    options = options or LayoutOptions()
    hints = hints or {}
    vertical = direction in ('DOWN', 'UP')

    graph = _build_graph(nodes, edges)
    model_order = {node.id: i for i, node in enumerate(nodes)}
    # thickness runs along the flow, extent across it
    thickness = {n.id: n.height if vertical else n.width for n in nodes}
    extent = {n.id: n.width if vertical else n.height for n in nodes}
    hint_cross = {
        node_id: (pos.x if vertical else pos.y)
        for node_id, pos in hints.items()
        if node_id in graph
    }

    layers = _assign_layers(graph, model_order)
    _order_layers(graph, layers, model_order, hint_cross)

    layer_start: dict[str, float] = {}
    offset = options.padding
    for members in layers:
        for node_id in members:
            layer_start[node_id] = offset
        offset += max(thickness[n] for n in members) + options.layer_spacing

    cross_start: dict[str, float] = {}
    center: dict[str, float] = {}
    for members in layers:
        cursor = options.padding
        for node_id in members:
            preds = list(graph.predecessors(node_id))
            if preds:
                desired = sum(center[p] for p in preds) / len(preds) - extent[node_id] / 2
            else:
                desired = hint_cross.get(node_id, cursor)
            start = max(desired, cursor)
            cross_start[node_id] = start
            center[node_id] = start + extent[node_id] / 2
            cursor = start + extent[node_id] + options.node_spacing

    shift = options.padding - min(cross_start.values(), default=options.padding)
    total = max((layer_start[n] + thickness[n] for n in layer_start), default=0) + options.padding

    positions: dict[str, Position] = {}
    for node in nodes:
        along = layer_start[node.id]
        if direction in ('UP', 'LEFT'):
            along = total - along - thickness[node.id]
        across = cross_start[node.id] + shift
        positions[node.id] = (
            Position(x=across, y=along) if vertical else Position(x=along, y=across)
        )
    return positions


class LayoutEngine:
    """
    Runs layouts off the event loop and applies them to the graph.

    Requests may finish out of order; only the result of the most recent request is
    applied. A failed layout leaves existing positions untouched.
    """

    def __init__(self, direction: Direction = 'DOWN', options: LayoutOptions | None = None):
        self.direction: Direction = direction
        self.options: LayoutOptions = options or LayoutOptions()
        self._latest_request: int = 0

    async def request_layout(
        self,
        graph: GraphModel,
        nodes: Sequence[LayoutNode],
        edges: Sequence[LayoutEdge],
        direction: Direction | None = None,
    ) -> LayoutOutcome:
        self._latest_request += 1
        request = self._latest_request
        hints = {
            entity.id: entity.position
            for entity in [*graph.articles(), *graph.questions()]
            if entity.position is not None
        }

        try:
            positions = await asyncio.to_thread(
                compute_layout,
                list(nodes),
                list(edges),
                direction or self.direction,
                hints,
                self.options,
            )
        except LayoutError as e:
            if request != self._latest_request:
                logger.debug('Discarding failed layout %d, superseded: %s', request, e)
                return LayoutOutcome.STALE
            logger.error('Layout request %d failed, keeping previous positions: %s', request, e)
            raise

        if request != self._latest_request:
            logger.debug('Discarding layout %d, superseded by %d', request, self._latest_request)
            return LayoutOutcome.STALE
        if positions is None:
            logger.debug('Layout %d incomplete, waiting for node measurements', request)
            return LayoutOutcome.INCOMPLETE

        graph.apply_positions(positions)
        graph.mark_clean()
        logger.info('Applied layout %d for %d nodes', request, len(positions))
        return LayoutOutcome.ACCEPTED
