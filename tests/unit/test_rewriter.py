"""Tests for document rewriting."""

from __future__ import annotations

import re
from pathlib import Path

import pytest

from markcdn.config import ImagesConfig
from markcdn.coordinator import UploadCoordinator
from markcdn.files import DirectoryFileIndex
from markcdn.markup import MarkupGenerator
from markcdn.mdast import Node
from markcdn.models import RemoteAsset
from markcdn.rewriter import DocumentRewriter, is_eligible


def paragraph(*children: dict) -> dict:
    return {"type": "paragraph", "children": list(children)}


def root(*children: dict) -> Node:
    return Node.from_dict({"type": "root", "children": list(children)})


@pytest.fixture
def rewriter(mock_client, images_config, memory_cache) -> DocumentRewriter:
    coordinator = UploadCoordinator(mock_client, memory_cache)
    return DocumentRewriter(MarkupGenerator(images_config, coordinator, DirectoryFileIndex()))


@pytest.fixture
def site(make_image) -> Path:
    make_image("photo.png", size=(2000, 1000))
    make_image("img/other.jpg", size=(800, 600), color=(10, 200, 10))
    return make_image("img/logo.png", size=(300, 300), color=(10, 10, 200)).parent.parent


class TestIsEligible:
    """Tests for is_eligible."""

    def test_eligible(self):
        assert is_eligible("./photo.png")
        assert is_eligible("img/photo.JPG?crop=1:1")

    def test_not_eligible(self):
        assert not is_eligible("https://example.com/photo.png")
        assert not is_eligible("./photo.bmp")
        assert not is_eligible("")
        assert not is_eligible(None)


class TestRewrite:
    """Tests for DocumentRewriter.rewrite."""

    @pytest.mark.asyncio
    async def test_image_node_replaced(self, rewriter, site):
        tree = root(paragraph({"type": "image", "url": "./photo.png", "alt": "Red"}))

        replaced = await rewriter.rewrite(tree, site)

        node = tree.children[0].children[0]
        assert replaced == [node]
        assert node.type == "html"
        assert 'alt="Red"' in node.value
        assert "gatsby-resp-image-link" in node.value

    @pytest.mark.asyncio
    async def test_absolute_url_untouched(self, rewriter, site, mock_client):
        image = {"type": "image", "url": "https://example.com/photo.png"}
        tree = root(paragraph(image))

        assert await rewriter.rewrite(tree, site) == []
        assert tree.to_dict()["children"][0]["children"][0] == image
        mock_client.upload_file.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unsupported_extension_untouched(self, rewriter, site):
        tree = root(paragraph({"type": "image", "url": "./photo.bmp"}))
        assert await rewriter.rewrite(tree, site) == []
        assert tree.children[0].children[0].type == "image"

    @pytest.mark.asyncio
    async def test_missing_file_untouched(self, rewriter, site):
        tree = root(paragraph({"type": "image", "url": "./nope.png"}))
        assert await rewriter.rewrite(tree, site) == []
        assert tree.children[0].children[0].type == "image"

    @pytest.mark.asyncio
    async def test_same_file_twice_uploads_once(self, rewriter, site, mock_client):
        """Two references to one file share one upload and identical markup."""
        tree = root(
            paragraph({"type": "image", "url": "./photo.png"}),
            paragraph({"type": "image", "url": "photo.png"}),
        )

        replaced = await rewriter.rewrite(tree, site)

        assert len(replaced) == 2
        assert mock_client.upload_file.await_count == 1
        first, second = (n.value for n in replaced)
        srcset = re.compile(r'srcset="([^"]*)"')
        assert srcset.search(first).group(1) == srcset.search(second).group(1)
        assert first == second

    @pytest.mark.asyncio
    async def test_image_inside_link(self, rewriter, site):
        tree = root(
            paragraph(
                {
                    "type": "link",
                    "url": "https://example.com",
                    "children": [{"type": "image", "url": "./photo.png"}],
                }
            )
        )

        replaced = await rewriter.rewrite(tree, site)

        assert len(replaced) == 1
        assert "gatsby-resp-image-link" not in replaced[0].value

    @pytest.mark.asyncio
    async def test_image_reference(self, rewriter, site):
        """Image references resolve through definitions and keep their own alt."""
        tree = root(
            paragraph({"type": "imageReference", "identifier": "Logo", "alt": "Our logo"}),
            {"type": "definition", "identifier": "logo", "url": "./img/logo.png", "title": "Logo"},
        )

        replaced = await rewriter.rewrite(tree, site)

        node = tree.children[0].children[0]
        assert replaced == [node]
        assert node.type == "html"
        assert 'alt="Our logo"' in node.value
        assert 'title="Logo"' in node.value

    @pytest.mark.asyncio
    async def test_unresolved_image_reference(self, rewriter, site):
        tree = root(paragraph({"type": "imageReference", "identifier": "missing"}))
        assert await rewriter.rewrite(tree, site) == []
        assert tree.children[0].children[0].type == "imageReference"

    @pytest.mark.asyncio
    async def test_html_images(self, rewriter, site):
        """Each <img> of an HTML fragment is replaced in place."""
        value = (
            '<div class="gallery"><img src="./img/other.jpg" alt="Green">'
            '<img src="https://example.com/x.png"></div>'
        )
        tree = root({"type": "html", "value": value})

        replaced = await rewriter.rewrite(tree, site)

        node = tree.children[0]
        assert replaced == [node]
        assert node.value.startswith('<div class="gallery">')
        assert 'alt="Green"' in node.value
        assert "gatsby-resp-image-wrapper" in node.value
        assert 'src="./img/other.jpg"' not in node.value
        assert 'src="https://example.com/x.png"' in node.value

    @pytest.mark.asyncio
    async def test_html_without_eligible_images_untouched(self, rewriter, site):
        value = '<p><img src="https://example.com/x.png"><br></p>'
        tree = root({"type": "html", "value": value})

        assert await rewriter.rewrite(tree, site) == []
        assert tree.children[0].value == value

    @pytest.mark.asyncio
    async def test_html_inside_anchor_is_in_link(self, rewriter, site):
        tree = root(
            paragraph(
                {"type": "html", "value": '<a href="/home">'},
                {"type": "image", "url": "./photo.png"},
                {"type": "html", "value": "</a>"},
            )
        )

        replaced = await rewriter.rewrite(tree, site)

        assert len(replaced) == 1
        assert "gatsby-resp-image-link" not in replaced[0].value

    @pytest.mark.asyncio
    async def test_jsx_node(self, rewriter, site):
        tree = root({"type": "jsx", "value": '<img src="./photo.png" alt="Jsx"/>'})
        replaced = await rewriter.rewrite(tree, site)
        assert len(replaced) == 1
        assert replaced[0].type == "html"

    @pytest.mark.asyncio
    async def test_invalid_options_leave_node_untouched(
        self, mock_client, memory_cache, site
    ):
        """A configuration error fails the image, not the document."""
        config = ImagesConfig(pubkey="pub", max_width=0)
        coordinator = UploadCoordinator(mock_client, memory_cache)
        rewriter = DocumentRewriter(MarkupGenerator(config, coordinator, DirectoryFileIndex()))
        tree = root(paragraph({"type": "image", "url": "./photo.png"}))

        assert await rewriter.rewrite(tree, site) == []
        assert tree.children[0].children[0].type == "image"

    @pytest.mark.asyncio
    async def test_one_failure_does_not_affect_siblings(self, rewriter, site, mock_client):
        async def flaky_upload(data, *, file_name, metadata=None):
            if file_name == "logo.png":
                raise RuntimeError("unexpected")
            return RemoteAsset(f"uuid-{file_name}", file_name, 800, 600)

        mock_client.upload_file.side_effect = flaky_upload
        tree = root(
            paragraph({"type": "image", "url": "./img/logo.png"}),
            paragraph({"type": "image", "url": "./img/other.jpg"}),
        )

        replaced = await rewriter.rewrite(tree, site)

        assert [n.type for n in replaced] == ["html"]
        assert tree.children[0].children[0].type == "image"
        assert tree.children[1].children[0].type == "html"


    @pytest.mark.asyncio
    async def test_html_image_failure_does_not_affect_siblings(self, rewriter, site):
        """A failing <img> in a fragment leaves the other <img> rewritten."""
        generate = rewriter.generator.generate

        async def flaky_generate(reference, document_dir, **kwargs):
            if reference.url.endswith("logo.png"):
                raise OSError("disk full")
            return await generate(reference, document_dir, **kwargs)

        rewriter.generator.generate = flaky_generate
        value = '<p><img src="./img/other.jpg"><img src="./img/logo.png"></p>'
        tree = root({"type": "html", "value": value})

        replaced = await rewriter.rewrite(tree, site)

        node = tree.children[0]
        assert replaced == [node]
        assert "gatsby-resp-image-wrapper" in node.value
        assert 'src="./img/other.jpg"' not in node.value
        assert '<img src="./img/logo.png"/>' in node.value


class TestRewriteMany:
    """Tests for DocumentRewriter.rewrite_many."""

    @pytest.mark.asyncio
    async def test_uploads_shared_across_documents(self, rewriter, site, mock_client):
        first = root(paragraph({"type": "image", "url": "./photo.png"}))
        second = root(paragraph({"type": "image", "url": "../photo.png"}))

        results = await rewriter.rewrite_many([(first, site), (second, site / "img")])

        assert [len(r) for r in results] == [1, 1]
        assert mock_client.upload_file.await_count == 1
