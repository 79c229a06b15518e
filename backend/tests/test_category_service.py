import random
import pytest
from app.core.exceptions import (
    CategoryError,
    ConflictError,
    CyclicReferenceError,
    InvalidInputError,
    InvalidParentError,
    NotFoundError,
    SelfParentError,
)
from app.services import category_store as store
from app.services.cache import CategoryCache
from app.services.categories import CategoryService, DEFAULT_CATEGORIES
from conftest import assert_tree_invariants, display_orders


# === create ===

def test_create_assigns_consecutive_root_orders(service):
    programming = service.create("Programming")
    design = service.create("Design")

    assert (programming["display_order"], design["display_order"]) == (0, 1)
    assert programming["parent_id"] is None
    assert programming["slug"] == "programming"
    assert programming["is_active"] is True


def test_create_child_orders_are_per_parent(service):
    root = service.create("Root")
    service.create("Other root")
    first = service.create("First", parent_id=root["id"])
    second = service.create("Second", parent_id=root["id"])

    assert (first["display_order"], second["display_order"]) == (0, 1)


def test_create_with_blank_parent_makes_root(service):
    category = service.create("Root", parent_id="")
    assert category["parent_id"] is None


def test_create_with_unknown_parent_fails(service, db):
    with pytest.raises(InvalidParentError):
        service.create("Orphan", parent_id=999)
    assert store.list_all(db) == []


def test_duplicate_names_get_unique_slugs(service):
    first = service.create("Tools")
    second = service.create("Tools")

    assert first["slug"] == "tools"
    assert second["slug"] == "tools-1"


# === update ===

def test_update_name_regenerates_slug(service):
    category = service.create("Web")

    updated = service.update(category["id"], {"name": "Web Development"})

    assert updated["name"] == "Web Development"
    assert updated["slug"] == "web-development"


def test_update_same_name_keeps_slug(service):
    service.create("Tools")
    second = service.create("Tools")

    updated = service.update(second["id"], {"name": "Tools", "description": "x"})

    assert updated["slug"] == "tools-1"
    assert updated["description"] == "x"


def test_rename_to_taken_slug_is_uniquified(service):
    service.create("Design")
    other = service.create("Art")

    updated = service.update(other["id"], {"name": "Design"})

    assert updated["slug"] == "design-1"


def test_update_without_parent_keeps_position(service):
    service.create("A")
    b = service.create("B")

    updated = service.update(b["id"], {"is_active": False})

    assert updated["display_order"] == 1
    assert updated["is_active"] is False


def test_update_with_same_parent_does_not_reorder(service, db):
    root = service.create("Root")
    first = service.create("First", parent_id=root["id"])
    service.create("Second", parent_id=root["id"])

    updated = service.update(first["id"], {"parent_id": root["id"]})

    assert updated["display_order"] == 0
    assert display_orders(db, root["id"]) == [0, 1]


def test_move_appends_to_new_parent_and_reindexes_old(service, db):
    x = service.create("X")
    y = service.create("Y")
    z = service.create("Z")

    moved = service.update(y["id"], {"parent_id": x["id"]})

    assert moved["parent_id"] == x["id"]
    assert moved["display_order"] == 0
    roots = store.children_of(db, None)
    assert [(c.name, c.display_order) for c in roots] == [("X", 0), ("Z", 1)]
    assert service.get_by_id(z["id"])["display_order"] == 1


def test_move_to_root_with_null_parent(service, db):
    root = service.create("Root")
    child = service.create("Child", parent_id=root["id"])
    service.create("Sibling", parent_id=root["id"])

    moved = service.update(child["id"], {"parent_id": None})

    assert moved["parent_id"] is None
    assert moved["display_order"] == 1
    assert display_orders(db, root["id"]) == [0]


def test_self_parent_is_rejected(service):
    category = service.create("A")
    with pytest.raises(SelfParentError):
        service.update(category["id"], {"parent_id": category["id"]})


def test_cycle_is_rejected(service, db):
    a = service.create("A")
    b = service.create("B", parent_id=a["id"])

    with pytest.raises(CyclicReferenceError):
        service.update(a["id"], {"parent_id": b["id"]})

    assert store.get(db, a["id"]).parent_id is None


def test_deep_cycle_is_rejected(service):
    a = service.create("A")
    b = service.create("B", parent_id=a["id"])
    c = service.create("C", parent_id=b["id"])
    d = service.create("D", parent_id=c["id"])

    with pytest.raises(CyclicReferenceError):
        service.update(a["id"], {"parent_id": d["id"]})


def test_cycle_check_stops_on_corrupted_loop(service, db):
    a = service.create("A")
    b = service.create("B")
    target = service.create("Target")
    # Петля A <-> B в обход сервиса
    store.update_fields(db, a["id"], parent_id=b["id"])
    store.update_fields(db, b["id"], parent_id=a["id"])
    db.commit()

    with pytest.raises(CyclicReferenceError):
        service.update(target["id"], {"parent_id": a["id"]})


def test_update_with_unknown_parent_fails(service):
    category = service.create("A")
    with pytest.raises(InvalidParentError):
        service.update(category["id"], {"parent_id": 999})


def test_update_missing_category(service):
    with pytest.raises(NotFoundError):
        service.update(404, {"name": "Nope"})


def test_failed_move_is_rolled_back_and_cache_kept(service, db, cache, monkeypatch):
    x = service.create("X")
    y = service.create("Y")
    service.get_hierarchy()

    def broken_reindex(*args, **kwargs):
        raise RuntimeError("store failure")

    monkeypatch.setattr(store, "reindex_siblings", broken_reindex)

    with pytest.raises(RuntimeError):
        service.update(y["id"], {"parent_id": x["id"]})

    reloaded = store.get(db, y["id"])
    assert reloaded.parent_id is None
    assert reloaded.display_order == 1
    # Инвалидация только после commit
    assert cache.get_hierarchy(False) is not None


# === delete ===

def test_delete_closes_gap_between_roots(service, db):
    programming = service.create("Programming")
    design = service.create("Design")
    service.get_by_id(design["id"])

    service.delete(programming["id"])

    assert service.get_by_id(design["id"])["display_order"] == 0
    assert display_orders(db, None) == [0]


def test_delete_reparents_children_to_roots(service, db):
    a = service.create("A")
    parent = service.create("Parent")
    service.create("Z")
    c1 = service.create("C1", parent_id=parent["id"])
    c2 = service.create("C2", parent_id=parent["id"])
    service.get_by_id(c1["id"])

    service.delete(parent["id"])

    roots = store.children_of(db, None)
    assert [c.name for c in roots] == ["A", "Z", "C1", "C2"]
    assert display_orders(db, None) == [0, 1, 2, 3]
    assert service.get_by_id(c1["id"])["parent_id"] is None
    assert a["id"] in [c.id for c in roots]
    assert c2["id"] in [c.id for c in roots]


def test_delete_nested_category_moves_children_to_root_end(service, db):
    root = service.create("Root")
    middle = service.create("Middle", parent_id=root["id"])
    service.create("Sibling", parent_id=root["id"])
    leaf = service.create("Leaf", parent_id=middle["id"])

    service.delete(middle["id"])

    assert store.get(db, leaf["id"]).parent_id is None
    assert store.get(db, leaf["id"]).display_order == 1
    assert display_orders(db, root["id"]) == [0]
    assert_tree_invariants(db)


def test_delete_removes_course_links(service, db):
    category = service.create("A")
    service.associate(10, [category["id"]])

    service.delete(category["id"])

    assert store.category_ids_for_course(db, 10) == []
    assert service.get_categories_for_course(10) == []


def test_delete_missing_category(service):
    with pytest.raises(NotFoundError):
        service.delete(404)


def test_deleted_slug_lookup_is_not_served_from_cache(service):
    category = service.create("Tools")
    service.get_by_slug("tools")

    service.delete(category["id"])

    with pytest.raises(NotFoundError):
        service.get_by_slug("tools")


# === reads & cache-aside ===

def test_get_by_id_is_cached_until_write(service, cache):
    category = service.create("Programming")

    service.get_by_id(category["id"])
    assert cache.get_category(category["id"])["name"] == "Programming"

    service.update(category["id"], {"name": "Coding"})

    assert cache.get_category(category["id"]) is None
    assert service.get_by_id(category["id"])["name"] == "Coding"


def test_renamed_category_old_slug_is_invalidated(service):
    category = service.create("Web")
    service.get_by_slug("web")

    service.update(category["id"], {"name": "Frontend"})

    with pytest.raises(NotFoundError):
        service.get_by_slug("web")
    assert service.get_by_slug("frontend")["id"] == category["id"]


def test_hierarchy_builds_tree(service):
    a = service.create("A")
    b = service.create("B", parent_id=a["id"])
    service.create("C", parent_id=b["id"])
    d = service.create("D", is_active=False)
    service.create("E", parent_id=d["id"])

    tree = service.get_hierarchy(active_only=False)

    assert [n["name"] for n in tree] == ["A", "D"]
    assert tree[0]["children"][0]["name"] == "B"
    assert tree[0]["children"][0]["children"][0]["name"] == "C"
    assert [n["name"] for n in tree[1]["children"]] == ["E"]


def test_active_hierarchy_skips_inactive_branches(service):
    service.create("A")
    d = service.create("D", is_active=False)
    service.create("E", parent_id=d["id"])

    tree = service.get_hierarchy(active_only=True)

    assert [n["name"] for n in tree] == ["A"]


def test_hierarchy_cache_is_invalidated_by_create(service, cache):
    service.create("A")
    assert len(service.get_hierarchy()) == 1
    assert cache.get_hierarchy(False) is not None

    service.create("B")

    assert cache.get_hierarchy(False) is None
    assert [n["name"] for n in service.get_hierarchy()] == ["A", "B"]


def test_list_categories_paginates_and_filters(service):
    root = service.create("Root")
    for name in ("One", "Two", "Three"):
        service.create(name, parent_id=root["id"])

    page = service.list_categories(page=1, limit=2, parent_id=root["id"])
    assert page["total"] == 3
    assert page["pages"] == 2
    assert [c["name"] for c in page["items"]] == ["One", "Two"]

    roots = service.list_categories(parent_id=None)
    assert [c["name"] for c in roots["items"]] == ["Root"]


def test_list_cache_is_invalidated_by_write(service):
    service.create("A")
    assert service.list_categories()["total"] == 1

    service.create("B")

    assert service.list_categories()["total"] == 2


def test_category_counts(service):
    a = service.create("A")
    b = service.create("B")
    service.associate(1, [a["id"], b["id"]])
    service.associate(2, [a["id"]])

    counts = {c["name"]: c["course_count"] for c in service.get_category_counts()}
    assert counts == {"A": 2, "B": 1}

    service.disassociate(2, [a["id"]])

    counts = {c["name"]: c["course_count"] for c in service.get_category_counts()}
    assert counts == {"A": 1, "B": 1}


# === associations ===

def test_disassociate_invalidates_course_categories(service):
    a = service.create("A")
    b = service.create("B")
    service.associate(1, [a["id"], b["id"]])

    assert {c["name"] for c in service.get_categories_for_course(1)} == {"A", "B"}

    service.disassociate(1, [a["id"]])

    assert [c["name"] for c in service.get_categories_for_course(1)] == ["B"]


def test_associate_is_idempotent(service, db):
    a = service.create("A")

    assert service.associate(1, [a["id"]]) == [a["id"]]
    assert service.associate(1, [a["id"]]) == []
    assert store.category_ids_for_course(db, 1) == [a["id"]]


def test_associate_validates_all_ids_before_linking(service, db):
    a = service.create("A")

    with pytest.raises(NotFoundError):
        service.associate(1, [a["id"], 999])

    assert store.category_ids_for_course(db, 1) == []


def test_associate_requires_ids(service):
    with pytest.raises(InvalidInputError):
        service.associate(1, [])


def test_associate_race_surfaces_as_conflict(service, db, monkeypatch):
    a = service.create("A")
    monkeypatch.setattr(store, "get_link", lambda *args: None)
    service.associate(1, [a["id"]])
    db.expunge_all()

    with pytest.raises(ConflictError):
        service.associate(1, [a["id"]])


def test_disassociate_unknown_link(service):
    a = service.create("A")
    with pytest.raises(NotFoundError):
        service.disassociate(1, [a["id"]])


def test_replace_associations_diffs_and_invalidates_union(service, db):
    a = service.create("A")
    b = service.create("B")
    c = service.create("C")
    service.associate(1, [a["id"], b["id"]])
    assert service.get_courses_for_category(a["id"])["course_ids"] == [1]
    service.get_categories_for_course(1)

    result = service.replace_associations(1, [b["id"], c["id"]])

    assert result == sorted([b["id"], c["id"]])
    assert store.category_ids_for_course(db, 1) == sorted([b["id"], c["id"]])
    assert service.get_courses_for_category(a["id"])["course_ids"] == []
    assert service.get_courses_for_category(c["id"])["course_ids"] == [1]
    assert {x["name"] for x in service.get_categories_for_course(1)} == {"B", "C"}


def test_replace_with_empty_list_unlinks_everything(service, db):
    a = service.create("A")
    service.associate(1, [a["id"]])

    assert service.replace_associations(1, []) == []
    assert store.category_ids_for_course(db, 1) == []


def test_courses_for_category_with_subcategories(service):
    root = service.create("Root")
    child = service.create("Child", parent_id=root["id"])
    service.associate(1, [root["id"]])
    service.associate(2, [child["id"]])
    service.associate(3, [child["id"], root["id"]])

    direct = service.get_courses_for_category(root["id"])
    nested = service.get_courses_for_category(root["id"], include_subcategories=True)

    assert direct["course_ids"] == [1, 3]
    assert nested["course_ids"] == [1, 2, 3]
    assert nested["total"] == 3


def test_courses_for_category_reflects_moves(service):
    root = service.create("Root")
    child = service.create("Child")
    service.associate(5, [child["id"]])
    assert service.get_courses_for_category(root["id"], include_subcategories=True)["total"] == 0

    service.update(child["id"], {"parent_id": root["id"]})

    assert service.get_courses_for_category(root["id"], include_subcategories=True)["course_ids"] == [5]


def test_courses_for_unknown_category(service):
    with pytest.raises(NotFoundError):
        service.get_courses_for_category(404)


def test_parent_subtree_courses_follow_child_links(service):
    root = service.create("Root")
    middle = service.create("Middle", parent_id=root["id"])
    leaf = service.create("Leaf", parent_id=middle["id"])
    assert service.get_courses_for_category(root["id"], include_subcategories=True)["course_ids"] == []

    service.associate(7, [leaf["id"]])

    assert service.get_courses_for_category(root["id"], include_subcategories=True)["course_ids"] == [7]
    assert service.get_courses_for_category(middle["id"], include_subcategories=True)["course_ids"] == [7]

    service.disassociate(7, [leaf["id"]])

    assert service.get_courses_for_category(root["id"], include_subcategories=True)["course_ids"] == []


def test_parent_subtree_courses_follow_replace(service):
    root = service.create("Root")
    child = service.create("Child", parent_id=root["id"])
    service.associate(3, [child["id"]])
    assert service.get_courses_for_category(root["id"], include_subcategories=True)["total"] == 1

    service.replace_associations(3, [])

    assert service.get_courses_for_category(root["id"], include_subcategories=True)["total"] == 0


def test_cached_courses_for_category_skip_database(service, monkeypatch):
    category = service.create("Tools")
    service.associate(1, [category["id"]])
    expected = service.get_courses_for_category(category["id"])

    def no_database(*args, **kwargs):
        raise AssertionError("store read on cache hit")

    monkeypatch.setattr(store, "get", no_database)

    assert service.get_courses_for_category(category["id"]) == expected


# === service utilities ===

def test_add_default_categories_skips_existing(service):
    service.create("Programming")

    created = service.add_default_categories()

    assert len(created) == len(DEFAULT_CATEGORIES) - 1
    assert service.add_default_categories() == []


def test_warm_up_populates_cache(service, cache):
    service.create("A")

    result = service.warm_up_cache()

    assert result["available"] is True
    assert cache.get_hierarchy(True) is not None
    assert cache.get_hierarchy(False) is not None
    assert cache.get_counts() is not None


def test_service_works_without_redis(db):
    service = CategoryService(db, CategoryCache(None))

    a = service.create("A")
    b = service.create("B", parent_id=a["id"])
    service.associate(1, [b["id"]])

    assert service.get_by_id(b["id"])["parent_id"] == a["id"]
    assert service.get_hierarchy()[0]["children"][0]["id"] == b["id"]
    assert [c["id"] for c in service.get_categories_for_course(1)] == [b["id"]]
    assert service.warm_up_cache()["available"] is False


def test_measure_cache_reports_both_calls(service):
    category = service.create("A")

    result = service.measure_cache(category["id"])

    assert result["category"]["id"] == category["id"]
    assert set(result["performance"]) == {"first_call_ms", "second_call_ms", "improvement_percent"}


# === invariants under random operations ===

def test_random_operations_keep_tree_invariants(service, db):
    rng = random.Random(20240611)
    names = ["Tools", "Design", "Data", "Web", "Mobile"]

    for step in range(120):
        ids = [c.id for c in store.list_all(db)]
        action = rng.random()
        try:
            if action < 0.45 or not ids:
                parent = rng.choice(ids + [None]) if ids else None
                service.create(rng.choice(names), parent_id=parent)
            elif action < 0.8:
                service.update(rng.choice(ids), {"parent_id": rng.choice(ids + [None])})
            elif action < 0.9:
                service.update(rng.choice(ids), {"name": rng.choice(names)})
            else:
                service.delete(rng.choice(ids))
        except CategoryError:
            pass

        assert_tree_invariants(db)
