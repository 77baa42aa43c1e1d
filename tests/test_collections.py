from datetime import datetime, timezone
from pathlib import Path

from kestrel.collections import (
    DocumentCollection,
    TagCollection,
    group_by,
    link_documents,
    sort_documents,
)
from kestrel.content import Document
from kestrel.frontmatter import FrontMatter


def make_doc(name, date=None, **front):
    return Document(
        id=name,
        path=Path("/site/_posts") / name,
        relative_path=f"_posts/{name}",
        collection="posts",
        front_matter=FrontMatter.from_mapping(front),
        content="",
        date=date,
    )


def test_sort_by_date_with_undated_first_and_name_tiebreak():
    a = make_doc("a.md", datetime(2024, 1, 2, tzinfo=timezone.utc))
    b = make_doc("b.md", datetime(2024, 1, 1, tzinfo=timezone.utc))
    c = make_doc("c.md", datetime(2024, 1, 1, tzinfo=timezone.utc))
    undated = make_doc("z.md")
    assert [d.name for d in sort_documents([a, c, undated, b])] == ["z.md", "b.md", "c.md", "a.md"]


def test_sort_by_weight_and_title():
    heavy = make_doc("heavy.md", weight=10)
    light = make_doc("light.md", weight=2)
    none = make_doc("none.md")
    assert [d.name for d in sort_documents([heavy, none, light], "weight")] == [
        "light.md",
        "heavy.md",
        "none.md",
    ]
    beta = make_doc("1.md", title="beta")
    alpha = make_doc("2.md", title="Alpha")
    assert [d.title for d in sort_documents([beta, alpha], "title")] == ["Alpha", "beta"]
    assert [d.name for d in sort_documents([alpha, beta], "name")] == ["1.md", "2.md"]


def test_sort_mixed_types_does_not_fail():
    docs = [make_doc("a.md", weight="high"), make_doc("b.md", weight=3)]
    assert [d.name for d in sort_documents(docs, "weight")] == ["b.md", "a.md"]


def test_link_documents_sets_previous_and_next():
    docs = [make_doc("a.md"), make_doc("b.md"), make_doc("c.md")]
    link_documents(docs)
    assert docs[0].previous is None and docs[0].next is docs[1]
    assert docs[1].previous is docs[0] and docs[1].next is docs[2]
    assert docs[2].next is None
    context = docs[1].to_context()
    assert context["previous"]["name"] == "a.md"
    assert "previous" not in context["next"]


def test_document_collection_helpers():
    items = DocumentCollection(
        [
            {"title": "A", "date": datetime(2024, 1, 2), "tags": ["py"], "categories": []},
            {"title": "B", "date": datetime(2024, 1, 3), "tags": [], "categories": ["news"]},
            {"title": "C", "date": None, "tags": ["py"], "categories": []},
        ]
    )
    assert len(items) == 3
    assert [d["title"] for d in items.with_tag("py")] == ["A", "C"]
    assert [d["title"] for d in items.in_category("news")] == ["B"]
    assert [d["title"] for d in items.latest(1)] == ["B"]
    assert items[0]["title"] == "A"


def test_group_by_builds_tag_collection():
    items = [
        {"title": "A", "tags": ["py", "web"]},
        {"title": "B", "tags": ["py"]},
        {"title": "C"},
    ]
    tags = group_by(items, "tags")
    assert isinstance(tags, TagCollection)
    assert sorted(tags) == ["py", "web"]
    assert [d["title"] for d in tags["py"]] == ["A", "B"]
    assert len(tags) == 2
    assert tags.get("missing") is None
