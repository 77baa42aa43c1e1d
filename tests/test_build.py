import logging
from pathlib import Path

import pytest

from kestrel.build import BuildError, BuildState, SiteBuilder, build_site, load_data
from kestrel.config import resolve_config
from kestrel.content import LoadError


def write(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


@pytest.fixture()
def blog(tmp_path):
    root = tmp_path / "blog"
    write(
        root / "_config.yml",
        "title: Test Blog\n"
        "author: Ada\n"
        "collections:\n"
        "  recipes:\n"
        "    output: true\n"
        "    sort_by: weight\n"
        "  notes:\n"
        "    output: false\n"
        "defaults:\n"
        "  - scope: {type: posts}\n"
        "    values: {layout: post}\n",
    )
    write(root / "_layouts" / "default.html", "<html><title>{{ site.title }}</title>{{ content }}</html>")
    write(root / "_layouts" / "post.html", "---\nlayout: default\n---\n<article>{{ content }}</article>")
    write(
        root / "_posts" / "2024-03-05-hello-world.md",
        "---\ntitle: Hello World\ntags: [intro]\ncategories: [news]\n---\nFirst post.\n\nMore text.\n",
    )
    write(
        root / "_posts" / "2024-04-01-second.md",
        "---\ntitle: Second\n---\nPrev: {{ page.previous.title }}\n",
    )
    write(root / "_recipes" / "soup.md", "---\ntitle: Soup\nweight: 2\n---\nHot\n")
    write(root / "_recipes" / "salad.md", "---\ntitle: Salad\nweight: 1\n---\nCold\n")
    write(root / "_notes" / "todo.md", "---\ntitle: Todo\n---\nNote\n")
    write(
        root / "index.html",
        "---\nlayout: default\n---\n"
        "{% for post in site.posts %}[{{ post.title }}|{{ post.url }}]{% endfor %}"
        "{% for r in site.recipes %}<{{ r.title }}>{% endfor %}"
        "{% for n in site.collections.notes.docs %}({{ n.title }}){% endfor %}"
        "{{ site.author }} {{ site.data.nav[0].name }} {{ site.tags.intro | length }}",
    )
    write(root / "_data" / "nav.yml", "- name: Home\n  url: /\n")
    write(root / "assets" / "style.css", "body { color: red }\n")
    return root


def test_build_writes_documents_and_static_files(blog):
    config = resolve_config(blog)
    result = build_site(config)
    dest = config.destination

    post = (dest / "news" / "2024" / "03" / "05" / "hello-world.html").read_text(encoding="utf-8")
    assert post.startswith("<html><title>Test Blog</title><article>")
    assert "<p>First post.</p>" in post

    second = (dest / "2024" / "04" / "01" / "second.html").read_text(encoding="utf-8")
    assert "Prev: Hello World" in second

    assert (dest / "recipes" / "soup.html").exists()
    assert not (dest / "notes").exists()
    assert (dest / "assets" / "style.css").read_text(encoding="utf-8") == "body { color: red }\n"

    index = (dest / "index.html").read_text(encoding="utf-8")
    assert "[Second|/2024/04/01/second.html][Hello World|/news/2024/03/05/hello-world.html]" in index
    assert "<Salad><Soup>" in index
    assert "(Todo)" in index
    assert "Ada Home 1" in index

    assert result.collisions == []
    assert result.skipped == []
    assert dest / "index.html" in result.written
    assert config.source / "assets" / "style.css" in result.static_files


def test_build_result_has_sorted_linked_collections(blog):
    result = build_site(resolve_config(blog))
    recipes = result.collections["recipes"].documents
    assert [doc.title for doc in recipes] == ["Salad", "Soup"]
    posts = result.collections["posts"].documents
    assert posts[0].next is posts[1]
    assert posts[0].excerpt.strip() == "<p>First post.</p>"


def test_builder_state_transitions(blog):
    builder = SiteBuilder(resolve_config(blog))
    assert builder.state is BuildState.IDLE
    builder.build()
    assert builder.state is BuildState.DONE
    assert builder.error is None


def test_clean_destination_honours_keep_files(blog):
    write(blog / "_config.local.yml", "keep_files: [CNAME]\n")
    config = resolve_config(blog, [blog / "_config.yml", blog / "_config.local.yml"])
    write(config.destination / "CNAME", "example.com")
    write(config.destination / "stale.html", "old")
    build_site(config)
    assert (config.destination / "CNAME").exists()
    assert not (config.destination / "stale.html").exists()


def test_refuses_destination_containing_source(tmp_path):
    source = tmp_path / "site"
    source.mkdir()
    config = resolve_config(source, overrides={"destination": tmp_path})
    builder = SiteBuilder(config)
    with pytest.raises(BuildError, match="contains the source"):
        builder.build()
    assert builder.state is BuildState.FAILED
    assert isinstance(builder.error, BuildError)


def test_render_errors_skip_by_default(tmp_path, caplog):
    write(tmp_path / "bad.md", "{% if %}")
    write(tmp_path / "good.md", "fine")
    config = resolve_config(tmp_path)
    with caplog.at_level(logging.ERROR, logger="kestrel"):
        result = build_site(config)
    assert result.skipped == [tmp_path.resolve() / "bad.md"]
    assert (config.destination / "good.html").exists()
    assert not (config.destination / "bad.html").exists()
    assert "Template syntax error" in caplog.text


def test_render_errors_abort(tmp_path):
    write(tmp_path / "_config.yml", "render_errors: abort\n")
    write(tmp_path / "bad.md", "{{ missing.attr.deeper }}")
    config = resolve_config(tmp_path)
    with pytest.raises(BuildError) as excinfo:
        build_site(config)
    assert excinfo.value.source_path.name == "bad.md"
    assert excinfo.value.original_error is not None


def test_output_collision_last_writer_wins(tmp_path, caplog):
    write(tmp_path / "a.md", "---\npermalink: /same/\n---\nfrom a")
    write(tmp_path / "b.md", "---\npermalink: /same/\n---\nfrom b")
    config = resolve_config(tmp_path)
    with caplog.at_level(logging.WARNING, logger="kestrel"):
        result = build_site(config)
    assert len(result.collisions) == 1
    collision = result.collisions[0]
    assert collision.output_path.as_posix() == "same/index.html"
    assert collision.previous.name == "a.md"
    assert collision.current.name == "b.md"
    assert "from b" in (config.destination / "same" / "index.html").read_text(encoding="utf-8")
    assert "Output collision" in caplog.text


def test_load_error_aborts_build(tmp_path):
    (tmp_path / "_posts").mkdir()
    (tmp_path / "_posts" / "2024-01-01-bad.md").write_bytes(b"\xff\xfe")
    builder = SiteBuilder(resolve_config(tmp_path))
    with pytest.raises(LoadError):
        builder.build()
    assert builder.state is BuildState.FAILED


def test_load_data_formats_and_nesting(tmp_path, caplog):
    data_dir = tmp_path / "_data"
    write(data_dir / "nav.yml", "- name: Home\n")
    write(data_dir / "settings.json", '{"dark": true}')
    write(data_dir / "people.csv", "name,role\nAda,author\n")
    write(data_dir / "team" / "leads.yaml", "lead: Bob\n")
    write(data_dir / "broken.json", "{")
    write(data_dir / "notes.txt", "ignored")
    with caplog.at_level(logging.WARNING, logger="kestrel"):
        data = load_data(data_dir)
    assert data["nav"] == [{"name": "Home"}]
    assert data["settings"] == {"dark": True}
    assert data["people"] == [{"name": "Ada", "role": "author"}]
    assert data["team"] == {"leads": {"lead": "Bob"}}
    assert "broken" not in data
    assert "notes" not in data
    assert "Skipping data file" in caplog.text
    assert load_data(tmp_path / "missing") == {}


def test_drafts_and_unpublished_flags(tmp_path):
    write(tmp_path / "_drafts" / "idea.md", "---\ntitle: Idea\n---\nDraft")
    write(tmp_path / "_posts" / "2024-01-01-hidden.md", "---\npublished: false\n---\nHidden")
    config = resolve_config(tmp_path)
    result = build_site(config)
    assert result.collections["posts"].documents == []
    result = build_site(config, include_drafts=True, include_unpublished=True)
    titles = sorted(doc.title or doc.name for doc in result.collections["posts"])
    assert titles == ["2024-01-01-hidden.md", "Idea"]


def test_write_failure_skips_document_and_build_continues(tmp_path, caplog):
    write(tmp_path / "a.md", "---\npermalink: /x.y\n---\nfile")
    write(tmp_path / "b.md", "---\npermalink: /x.y/z.html\n---\nnested")
    write(tmp_path / "c.md", "fine")
    config = resolve_config(tmp_path)
    with caplog.at_level(logging.ERROR, logger="kestrel"):
        result = build_site(config)
    assert result.skipped == [tmp_path.resolve() / "b.md"]
    assert (config.destination / "x.y").is_file()
    assert (config.destination / "c.html").exists()
    assert "Skipping b.md" in caplog.text


def test_write_failure_aborts_under_abort_policy(tmp_path):
    write(tmp_path / "_config.yml", "render_errors: abort\n")
    write(tmp_path / "a.md", "---\npermalink: /x.y\n---\nfile")
    write(tmp_path / "b.md", "---\npermalink: /x.y/z.html\n---\nnested")
    with pytest.raises(BuildError) as excinfo:
        build_site(resolve_config(tmp_path))
    assert excinfo.value.source_path.name == "b.md"
    assert isinstance(excinfo.value.original_error, OSError)
