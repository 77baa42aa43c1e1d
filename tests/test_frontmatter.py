import logging
from datetime import date

from kestrel.frontmatter import FrontMatter, extract_front_matter, has_front_matter


def test_extracts_known_and_custom_fields():
    text = (
        "---\n"
        "title: Hello World\n"
        "layout: post\n"
        "categories: news\n"
        "tags: [python, web]\n"
        "date: 2024-03-05\n"
        "published: false\n"
        "hero: banner.png\n"
        "series: intro\n"
        "---\n"
        "Body text.\n"
    )
    front_matter, body = extract_front_matter(text)
    assert front_matter.title == "Hello World"
    assert front_matter.layout == "post"
    assert front_matter.categories == ["news"]
    assert front_matter.tags == ["python", "web"]
    assert front_matter.date == "2024-03-05"
    assert front_matter.published is False
    assert not front_matter.is_published
    assert list(front_matter.custom) == ["hero", "series"]
    assert body == "Body text.\n"


def test_no_front_matter_returns_whole_text():
    text = "Just a body\n---\nwith a rule"
    front_matter, body = extract_front_matter(text)
    assert front_matter == FrontMatter()
    assert body == text


def test_leading_whitespace_before_delimiter_is_allowed():
    front_matter, body = extract_front_matter("\n\n---\ntitle: Hi\n---\nBody")
    assert front_matter.title == "Hi"
    assert body == "Body"
    assert has_front_matter("  \n---\n")
    assert not has_front_matter("----\n")


def test_malformed_block_recovers_with_warning(caplog):
    text = "---\ntitle: [unclosed\n---\nBody"
    with caplog.at_level(logging.WARNING, logger="kestrel.frontmatter"):
        front_matter, body = extract_front_matter(text)
    assert front_matter == FrontMatter()
    assert body == text
    assert "malformed front matter" in caplog.text


def test_missing_closing_delimiter_and_non_mapping_recover():
    unclosed = "---\ntitle: Hi\nno end"
    assert extract_front_matter(unclosed) == (FrontMatter(), unclosed)
    listing = "---\n- a\n- b\n---\nBody"
    assert extract_front_matter(listing) == (FrontMatter(), listing)


def test_empty_block_is_empty_front_matter():
    front_matter, body = extract_front_matter("---\n---\nBody")
    assert front_matter == FrontMatter()
    assert body == "Body"


def test_bad_known_value_is_kept_as_custom():
    front_matter, _ = extract_front_matter("---\nauthor:\n  name: Ada\n---\n")
    assert front_matter.author is None
    assert front_matter.custom["author"] == {"name": "Ada"}


def test_yaml_dates_are_rendered_back_to_text():
    front_matter = FrontMatter.from_mapping({"date": date(2024, 3, 5), "published": "false"})
    assert front_matter.date == "2024-03-05"
    assert front_matter.published is False


def test_fill_only_sets_unset_fields():
    front_matter = FrontMatter(layout="post")
    assert not front_matter.fill("layout", "default")
    assert front_matter.fill("author", "Ada")
    assert front_matter.fill("comments", True)
    assert not front_matter.fill("comments", False)
    assert front_matter.layout == "post"
    assert front_matter.author == "Ada"
    assert front_matter.custom == {"comments": True}
    assert front_matter.to_dict() == {"layout": "post", "author": "Ada", "comments": True}
