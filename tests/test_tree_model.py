from dbpanes.tree_model import (
    CatalogTree,
    NodeKind,
    NodeMetadata,
    TreeNode,
    build_path,
    table_target,
)


def _catalog() -> tuple[CatalogTree, dict[str, TreeNode]]:
    tree = CatalogTree.with_server("Servers", "local")
    server = tree.server_node
    database = TreeNode("db_db1", "db1", NodeKind.DATABASE, path="db1", level=1)
    schema = TreeNode("schema_db1_public", "public", NodeKind.SCHEMA, path="db1.public", level=2)
    users = TreeNode(
        "table_users",
        "users",
        NodeKind.TABLE,
        path="db1.public.users",
        level=3,
        metadata=NodeMetadata(size="16 kB"),
    )
    orders = TreeNode("table_orders", "orders", NodeKind.TABLE, path="db1.public.orders", level=3)
    email = TreeNode(
        "col_email",
        "email",
        NodeKind.COLUMN,
        path="db1.public.users.email",
        level=4,
        metadata=NodeMetadata(data_type="text", primary_key=True),
    )
    server.attach_children([database])
    database.attach_children([schema])
    schema.attach_children([users, orders])
    users.attach_children([email])
    nodes = {
        "server": server,
        "database": database,
        "schema": schema,
        "users": users,
        "orders": orders,
        "email": email,
    }
    return tree, nodes


def test_visible_nodes_skip_collapsed_descendants() -> None:
    tree, nodes = _catalog()
    assert tree.all_visible_nodes() == [nodes["server"]]

    nodes["server"].expand()
    nodes["database"].expand()
    assert tree.all_visible_nodes() == [nodes["server"], nodes["database"], nodes["schema"]]

    nodes["server"].collapse()
    assert tree.all_visible_nodes() == [nodes["server"]]


def test_visible_nodes_never_include_nodes_under_collapsed_ancestor() -> None:
    tree, nodes = _catalog()
    for node in nodes.values():
        node.expand()
    nodes["schema"].collapse()
    visible = tree.all_visible_nodes()
    for node in visible:
        ancestor = node.parent
        while ancestor is not None and ancestor is not tree.root:
            assert ancestor.expanded
            ancestor = ancestor.parent
    assert nodes["users"] not in visible


def test_set_selected_expands_ancestors_and_clears_previous() -> None:
    tree, nodes = _catalog()
    tree.set_selected(nodes["orders"])
    assert nodes["server"].expanded
    assert nodes["database"].expanded
    assert nodes["schema"].expanded
    assert nodes["orders"] in tree.all_visible_nodes()

    tree.set_selected(nodes["email"])
    assert not nodes["orders"].selected
    assert nodes["email"].selected
    assert tree.selected is nodes["email"]
    assert nodes["email"] in tree.all_visible_nodes()


def test_find_by_id_reports_miss() -> None:
    tree, nodes = _catalog()
    assert tree.find_by_id("col_email") is nodes["email"]
    assert tree.find_by_id("missing") is None


def test_leaf_expand_and_toggle_are_noops() -> None:
    _, nodes = _catalog()
    leaf = nodes["email"]
    leaf.expand()
    assert not leaf.expanded
    leaf.toggle()
    assert not leaf.expanded


def test_attach_children_only_loads_once() -> None:
    _, nodes = _catalog()
    extra = TreeNode("table_x", "x", NodeKind.TABLE, path="db1.public.x", level=3)
    assert not nodes["schema"].attach_children([extra])
    assert [child.name for child in nodes["schema"].children] == ["users", "orders"]

    nodes["schema"].replace_children([extra])
    assert nodes["schema"].children == [extra]
    assert extra.parent is nodes["schema"]


def test_path_reconstruction_and_table_target() -> None:
    _, nodes = _catalog()
    assert build_path(nodes["email"]) == "local.db1.public.users.email"
    assert nodes["email"].path == "db1.public.users.email"
    assert table_target(nodes["email"]) == ("db1", "public", "users")
    assert table_target(nodes["users"]) == ("db1", "public", "users")
    assert table_target(nodes["schema"]) is None


def test_node_count_includes_root() -> None:
    tree, _ = _catalog()
    assert tree.node_count() == 7


def test_display_helpers() -> None:
    _, nodes = _catalog()
    nodes["server"].metadata.count = 1
    assert nodes["server"].display_string().endswith("local (1 databases)")
    assert nodes["users"].pane_label() == "users 16 kB"
    assert nodes["email"].pane_label() == "email text 🔑"
    assert nodes["schema"].icon() == "📁"
    nodes["schema"].expand()
    assert nodes["schema"].icon() == "📂"
