from dataclasses import dataclass, field
from enum import IntEnum

from dbpanes.tree_model import TreeNode


DEFAULT_VIEWPORT_HEIGHT = 10


class PaneType(IntEnum):
    DATABASES = 0
    SCHEMAS = 1
    TABLES = 2
    DATA = 3

    @property
    def title(self) -> str:
        return self.name.capitalize()

    def next(self) -> "PaneType":
        return PaneType((self + 1) % len(PaneType))


@dataclass(eq=False)
class PaneState:
    pane_type: PaneType
    nodes: list[TreeNode] = field(default_factory=list)
    selected_index: int = 0
    offset: int = 0
    parent: TreeNode | None = None
    viewport_height: int = DEFAULT_VIEWPORT_HEIGHT

    @property
    def selected_node(self) -> TreeNode | None:
        if 0 <= self.selected_index < len(self.nodes):
            return self.nodes[self.selected_index]
        return None

    def set_nodes(self, nodes: list[TreeNode], parent: TreeNode | None) -> None:
        self.nodes = list(nodes)
        self.parent = parent
        self.selected_index = 0
        self.offset = 0
        for node in self.nodes:
            node.parent = parent

    def clear(self) -> None:
        self.set_nodes([], None)

    def set_viewport_height(self, height: int) -> None:
        self.viewport_height = max(height, 1)
        self._ensure_visible()

    def move_selection(self, delta: int) -> None:
        self.select(self.selected_index + delta)

    def select(self, index: int) -> None:
        if not self.nodes:
            self.selected_index = 0
            self.offset = 0
            return
        self.selected_index = min(max(index, 0), len(self.nodes) - 1)
        self._ensure_visible()

    def select_first(self) -> None:
        self.select(0)

    def select_last(self) -> None:
        self.select(len(self.nodes) - 1)

    def visible_nodes(self) -> list[TreeNode]:
        return self.nodes[self.offset : self.offset + self.viewport_height]

    def _ensure_visible(self) -> None:
        height = max(self.viewport_height, 1)
        if self.selected_index < self.offset:
            self.offset = self.selected_index
        elif self.selected_index >= self.offset + height:
            self.offset = self.selected_index - height + 1
        self.offset = max(self.offset, 0)


class PaneSet:
    def __init__(self) -> None:
        self.panes = {pane_type: PaneState(pane_type) for pane_type in PaneType}
        self.focus = PaneType.DATABASES

    def __getitem__(self, pane_type: PaneType) -> PaneState:
        return self.panes[pane_type]

    @property
    def focused(self) -> PaneState:
        return self.panes[self.focus]

    def selected_node(self, pane_type: PaneType | None = None) -> TreeNode | None:
        return self.panes[self.focus if pane_type is None else pane_type].selected_node

    def set_focus(self, pane_type: PaneType) -> None:
        self.focus = pane_type

    def focus_left(self) -> bool:
        if self.focus == PaneType.DATABASES:
            return False
        self.focus = PaneType(self.focus - 1)
        return True

    def cycle_focus(self) -> None:
        self.focus = self.focus.next()

    def seed(self, pane_type: PaneType, nodes: list[TreeNode], parent: TreeNode | None) -> None:
        """Fill a structural pane and empty every structural pane to its right."""
        self.panes[pane_type].set_nodes(nodes, parent)
        for later in PaneType:
            if pane_type < later < PaneType.DATA:
                self.panes[later].clear()

    def reset(self, databases: list[TreeNode], server: TreeNode | None) -> None:
        self.seed(PaneType.DATABASES, databases, server)
        self.focus = PaneType.DATABASES
