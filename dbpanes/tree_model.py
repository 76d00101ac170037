from dataclasses import dataclass, field
from enum import IntEnum


ROOT_LEVEL = -1


class NodeKind(IntEnum):
    SERVER = 0
    DATABASE = 1
    SCHEMA = 2
    TABLE = 3
    COLUMN = 4

    @property
    def label(self) -> str:
        return self.name.capitalize()


@dataclass
class NodeMetadata:
    size: str = ""
    row_count: int = 0
    count: int = 0
    data_type: str = ""
    is_nullable: bool = False
    default_value: str = ""
    primary_key: bool = False
    context_type: str = ""


@dataclass(eq=False)
class TreeNode:
    node_id: str
    name: str
    kind: NodeKind
    path: str = ""
    level: int = 0
    expanded: bool = False
    selected: bool = False
    metadata: NodeMetadata = field(default_factory=NodeMetadata)
    children: list["TreeNode"] = field(default_factory=list)
    parent: "TreeNode | None" = field(default=None, repr=False)

    @property
    def has_children(self) -> bool:
        return len(self.children) > 0

    def expand(self) -> None:
        if self.has_children:
            self.expanded = True

    def collapse(self) -> None:
        if self.has_children:
            self.expanded = False

    def toggle(self) -> None:
        if self.has_children:
            self.expanded = not self.expanded

    def attach_children(self, children: list["TreeNode"]) -> bool:
        """Attach a freshly loaded child level. Returns False if one is already loaded."""
        if self.children:
            return False
        for child in children:
            child.parent = self
        self.children = list(children)
        return True

    def replace_children(self, children: list["TreeNode"]) -> None:
        for child in children:
            child.parent = self
        self.children = list(children)
        if not self.children:
            self.expanded = False

    def icon(self) -> str:
        if self.kind == NodeKind.SERVER:
            return "🌐" if self.expanded else "🖧"
        if self.kind in (NodeKind.DATABASE, NodeKind.SCHEMA):
            return "📂" if self.expanded else "📁"
        if self.kind == NodeKind.TABLE:
            return "📊"
        if self.kind == NodeKind.COLUMN:
            return "🔹"
        return "❓"

    def display_string(self) -> str:
        indent = "  " * (self.level + 1)
        return f"{indent}{self.icon()} {self.name}{self._tree_metadata()}"

    def pane_label(self) -> str:
        metadata = self._pane_metadata()
        if not metadata:
            return self.name
        return f"{self.name} {metadata}"

    def _tree_metadata(self) -> str:
        if self.kind == NodeKind.SERVER:
            return f" ({self.metadata.count} databases)"
        if self.kind == NodeKind.DATABASE:
            return f" [{self.metadata.size}]" if self.metadata.size else ""
        if self.kind == NodeKind.SCHEMA:
            return f" ({self.metadata.count} tables)"
        if self.kind == NodeKind.TABLE:
            return f" {self.metadata.size}" if self.metadata.size else ""
        if self.kind == NodeKind.COLUMN:
            return f" {self.metadata.data_type}"
        return ""

    def _pane_metadata(self) -> str:
        if self.kind == NodeKind.DATABASE and self.metadata.size:
            return f"[{self.metadata.size}]"
        if self.kind == NodeKind.SCHEMA and self.metadata.count > 0:
            return f"({self.metadata.count})"
        if self.kind == NodeKind.TABLE:
            if self.metadata.size:
                return self.metadata.size
            if self.metadata.row_count > 0:
                return f"(~{self.metadata.row_count})"
            return ""
        if self.kind == NodeKind.COLUMN:
            key_marker = " 🔑" if self.metadata.primary_key else ""
            return f"{self.metadata.data_type}{key_marker}"
        return ""


class CatalogTree:
    def __init__(self, root: TreeNode) -> None:
        self.root = root
        self.selected: TreeNode | None = None

    @classmethod
    def with_server(cls, root_label: str, server_name: str) -> "CatalogTree":
        root = TreeNode(
            node_id="root",
            name=root_label,
            kind=NodeKind.SERVER,
            level=ROOT_LEVEL,
        )
        server = TreeNode(
            node_id=server_name,
            name=server_name,
            kind=NodeKind.SERVER,
            path=server_name,
            level=0,
        )
        root.attach_children([server])
        return cls(root)

    @property
    def server_node(self) -> TreeNode | None:
        if not self.root.children:
            return None
        return self.root.children[0]

    def all_visible_nodes(self) -> list[TreeNode]:
        visible: list[TreeNode] = []
        self._collect_visible(self.root, visible)
        return visible

    def _collect_visible(self, node: TreeNode, visible: list[TreeNode]) -> None:
        is_root = node.level == ROOT_LEVEL
        if not is_root:
            visible.append(node)
        if is_root or node.expanded:
            for child in node.children:
                self._collect_visible(child, visible)

    def set_selected(self, node: TreeNode | None) -> None:
        if self.selected is not None:
            self.selected.selected = False
        self.selected = node
        if node is None:
            return
        node.selected = True
        ancestor = node.parent
        while ancestor is not None:
            ancestor.expanded = True
            ancestor = ancestor.parent

    def find_by_id(self, node_id: str) -> TreeNode | None:
        stack = [self.root]
        while stack:
            node = stack.pop()
            if node.node_id == node_id:
                return node
            stack.extend(reversed(node.children))
        return None

    def node_count(self) -> int:
        count = 0
        stack = [self.root]
        while stack:
            node = stack.pop()
            count += 1
            stack.extend(node.children)
        return count

    def index_of(self, node: TreeNode) -> int | None:
        for index, visible_node in enumerate(self.all_visible_nodes()):
            if visible_node is node:
                return index
        return None


def build_path(node: TreeNode | None) -> str:
    parts: list[str] = []
    current = node
    while current is not None and current.level != ROOT_LEVEL:
        parts.append(current.name)
        current = current.parent
    return ".".join(reversed(parts))


def split_path_segments(path: str) -> list[str]:
    return [segment for segment in path.split(".") if segment]


def table_target(node: TreeNode | None) -> tuple[str, str, str] | None:
    """Resolve (database, schema, table) for a table node or one of its columns.

    Takes the last three segments of the table's parent-chain path, so it assumes
    exactly three structural levels (database, schema, table) end at a table.
    Names containing dots break this addressing.
    """
    table_node = node
    while table_node is not None and table_node.kind != NodeKind.TABLE:
        table_node = table_node.parent
    if table_node is None:
        return None
    parts = split_path_segments(build_path(table_node))
    if len(parts) < 3:
        return None
    database, schema, table = parts[-3:]
    return database, schema, table
