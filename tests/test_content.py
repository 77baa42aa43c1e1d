import os
from datetime import datetime, timedelta, timezone
from pathlib import Path, PurePosixPath

import pytest

from kestrel.config import resolve_config
from kestrel.content import LoadError, is_page_candidate, load_collections


def write(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


@pytest.fixture()
def site(tmp_path):
    root = tmp_path / "site"
    write(root / "_posts" / "2024-03-05-hello-world.md", "---\ntitle: Hello World\n---\nHi there.\n")
    write(root / "_posts" / "2024-01-01-new-year.md", "---\ncategories: [news]\n---\nParty.\n")
    write(root / "_posts" / "2024-02-02-secret.md", "---\npublished: false\n---\nHidden.\n")
    write(root / "_drafts" / "wip.md", "---\ntitle: Work In Progress\n---\nSoon.\n")
    write(root / "index.md", "---\ntitle: Home\n---\nWelcome\n")
    write(root / "about.md", "# About\n")
    write(root / "docs" / "index.html", "---\ntitle: Docs\n---\n<p>Docs</p>\n")
    write(root / "docs" / "plain.html", "<p>No front matter</p>\n")
    write(root / "assets" / "site.css", "body {}\n")
    write(root / ".hidden.md", "hidden\n")
    write(root / "node_modules" / "pkg" / "readme.md", "vendored\n")
    return root


def test_loads_posts_with_dates_and_urls(site):
    config = resolve_config(site)
    collections = load_collections(config)
    posts = collections["posts"]
    by_id = {doc.id: doc for doc in posts}
    assert set(by_id) == {"2024-01-01-new-year.md", "2024-03-05-hello-world.md"}
    hello = by_id["2024-03-05-hello-world.md"]
    assert hello.url == "/2024/03/05/hello-world.html"
    assert hello.output_path == PurePosixPath("2024/03/05/hello-world.html")
    assert hello.date == datetime(2024, 3, 5, tzinfo=timezone.utc)
    assert hello.content == "Hi there.\n"
    assert hello.relative_path == "_posts/2024-03-05-hello-world.md"
    assert by_id["2024-01-01-new-year.md"].url == "/news/2024/01/01/new-year.html"


def test_unpublished_is_excluded_unless_requested(site):
    config = resolve_config(site)
    ids = {doc.id for doc in load_collections(config)["posts"]}
    assert "2024-02-02-secret.md" not in ids
    ids = {doc.id for doc in load_collections(config, include_unpublished=True)["posts"]}
    assert "2024-02-02-secret.md" in ids


def test_drafts_are_appended_to_posts_with_now(site):
    config = resolve_config(site)
    assert not any(doc.draft for doc in load_collections(config)["posts"])
    before = datetime.now(timezone.utc)
    posts = load_collections(config, include_drafts=True)["posts"]
    draft = posts.documents[-1]
    assert draft.draft is True
    assert draft.id == "_drafts/wip.md"
    assert before - timedelta(seconds=1) <= draft.date <= datetime.now(timezone.utc)
    assert draft.url.endswith("/work-in-progress.html")


def test_draft_date_is_now_even_when_file_name_and_front_matter_give_one(tmp_path):
    write(tmp_path / "_drafts" / "2020-01-01-old.md", "---\ndate: 2019-05-05\n---\nOld idea.\n")
    config = resolve_config(tmp_path)
    before = datetime.now(timezone.utc)
    draft = load_collections(config, include_drafts=True)["posts"].documents[0]
    assert draft.draft is True
    assert before - timedelta(seconds=1) <= draft.date <= datetime.now(timezone.utc)
    assert draft.url.startswith(f"/{draft.date.year}/")
    assert draft.url.endswith("/old.html")


def test_pages_markdown_and_front_matter_html(site):
    config = resolve_config(site)
    pages = {doc.id: doc for doc in load_collections(config)["pages"]}
    assert set(pages) == {"about.md", "docs/index.html", "index.md"}
    assert pages["index.md"].url == "/"
    assert pages["index.md"].output_path == PurePosixPath("index.html")
    assert pages["about.md"].url == "/about.html"
    assert pages["docs/index.html"].url == "/docs/"
    assert pages["docs/index.html"].output_path == PurePosixPath("docs/index.html")


def test_is_page_candidate(site):
    config = resolve_config(site)
    assert is_page_candidate(site / "about.md", config)
    assert is_page_candidate(site / "docs" / "index.html", config)
    assert not is_page_candidate(site / "docs" / "plain.html", config)
    assert not is_page_candidate(site / "assets" / "site.css", config)


def test_custom_collection_permalinks_and_output(tmp_path):
    write(
        tmp_path / "_config.yml",
        "collections:\n"
        "  recipes:\n"
        "    output: true\n"
        "  notes:\n"
        "    output: false\n"
        "  guides:\n"
        "    output: true\n"
        "    permalink: /learn/:title/\n",
    )
    write(tmp_path / "_recipes" / "soups" / "tomato.md", "---\ntitle: Tomato Soup\n---\nYum\n")
    write(tmp_path / "_notes" / "idea.md", "An idea\n")
    write(tmp_path / "_guides" / "start.md", "---\ntitle: Getting Started\n---\nGo\n")
    write(tmp_path / "_guides" / "moved.md", "---\npermalink: /elsewhere/\n---\nHere\n")
    collections = load_collections(resolve_config(tmp_path))

    recipe = collections["recipes"].documents[0]
    assert recipe.id == "soups/tomato.md"
    assert recipe.url == "/recipes/soups/tomato.html"

    note = collections["notes"].documents[0]
    assert note.url == "/notes/idea.html"
    assert note.output_path is None

    guides = {doc.id: doc.url for doc in collections["guides"]}
    assert guides == {"moved.md": "/elsewhere/", "start.md": "/learn/getting-started/"}


def test_defaults_are_applied_collection_first(tmp_path):
    write(
        tmp_path / "_config.yml",
        "collections:\n"
        "  recipes:\n"
        "    output: true\n"
        "    defaults:\n"
        "      - values: {layout: recipe}\n"
        "defaults:\n"
        "  - scope: {path: ''}\n"
        "    values: {layout: default, author: Site}\n"
        "  - scope: {type: posts}\n"
        "    values: {layout: post}\n",
    )
    write(tmp_path / "_recipes" / "soup.md", "Soup\n")
    write(tmp_path / "_posts" / "2024-01-01-a.md", "---\nlayout: special\n---\nA\n")
    write(tmp_path / "page.md", "Page\n")
    collections = load_collections(resolve_config(tmp_path))
    recipe = collections["recipes"].documents[0]
    assert recipe.layout == "recipe"
    assert recipe.front_matter.author == "Site"
    assert collections["posts"].documents[0].layout == "special"
    assert collections["pages"].documents[0].layout == "default"


def test_excerpts(tmp_path):
    write(tmp_path / "_posts" / "2024-01-01-a.md", "First para.\n\nSecond para.\n")
    write(tmp_path / "_posts" / "2024-01-02-b.md", "---\nexcerpt: Custom\n---\nBody\n")
    write(tmp_path / "_posts" / "2024-01-03-c.md", "---\nexcerpt_separator: <!--more-->\n---\nTop\n\nStill top<!--more-->Rest\n")
    posts = {doc.id: doc for doc in load_collections(resolve_config(tmp_path))["posts"]}
    assert posts["2024-01-01-a.md"].excerpt == "First para."
    assert posts["2024-01-02-b.md"].excerpt == "Custom"
    assert posts["2024-01-03-c.md"].excerpt == "Top\n\nStill top"


def test_exclude_and_include_patterns(tmp_path):
    write(tmp_path / "_config.yml", "exclude: [private/]\ninclude: [private/public.md]\n")
    write(tmp_path / "private" / "secret.md", "no\n")
    write(tmp_path / "private" / "public.md", "yes\n")
    ids = {doc.id for doc in load_collections(resolve_config(tmp_path))["pages"]}
    assert ids == {"private/public.md"}


def test_invalid_front_matter_date_falls_back_to_filename(tmp_path, caplog):
    write(tmp_path / "_posts" / "2024-05-06-x.md", "---\ndate: someday\n---\nX\n")
    with caplog.at_level("WARNING", logger="kestrel"):
        doc = load_collections(resolve_config(tmp_path))["posts"].documents[0]
    assert doc.date == datetime(2024, 5, 6, tzinfo=timezone.utc)
    assert "Unrecognized date" in caplog.text


@pytest.mark.skipif(not hasattr(os, "symlink"), reason="symlinks unavailable")
def test_walk_follows_symlinked_directories(tmp_path):
    shared = tmp_path / "shared"
    write(shared / "linked.md", "---\ntitle: Linked\n---\nL\n")
    source = tmp_path / "site"
    (source / "_posts").mkdir(parents=True)
    try:
        os.symlink(shared, source / "_posts" / "shared", target_is_directory=True)
    except OSError:
        pytest.skip("cannot create symlink")
    ids = {doc.id for doc in load_collections(resolve_config(source))["posts"]}
    assert ids == {"shared/linked.md"}


def test_unreadable_file_raises_load_error(tmp_path):
    write(tmp_path / "_posts" / "2024-01-01-bad.md", "x")
    (tmp_path / "_posts" / "2024-01-01-bad.md").write_bytes(b"\xff\xfe\x00bad")
    with pytest.raises(LoadError) as excinfo:
        load_collections(resolve_config(tmp_path))
    assert excinfo.value.path.name == "2024-01-01-bad.md"
    assert excinfo.value.original_error is not None
