"""
Content Parser
==============

Turns a staged XML document into a ``ContentRecord``.

Expected document shape (root element name is not checked)::

    <article>
      <title>required</title>
      <subheader/> <abstract/> <author/> <bodytext/> <copyright/>
      <keywords>comma, separated</keywords>
    </article>

Parsing goes through ``defusedxml`` so entity expansion and external
entity tricks in remote documents are rejected.
"""

import re
from pathlib import Path
from typing import List, Optional
from urllib.parse import quote, unquote
from xml.etree.ElementTree import Element, tostring

import defusedxml.ElementTree as ET
from defusedxml import DefusedXmlException

from ..config.settings import PublishingSettings, StagingSettings
from ..database.models import ContentRecord, RecordStatus, StagedDocument
from ..ingestion.asset_fetcher import load_asset_name_map
from ..storage.interfaces import TagRegistry
from ..utils.exceptions import ErrorCode, MalformedDocumentError
from ..utils.logging import get_logger_for_component
from ..utils.validators import slugify, split_keywords

META_SPAN = '<span class="stream-meta">{label}:</span>'


def _local_name(tag) -> str:
    if not isinstance(tag, str):
        return ""
    return tag.rsplit("}", 1)[-1]


def _strip_namespaces(root: Element) -> None:
    for element in root.iter():
        if isinstance(element.tag, str):
            element.tag = _local_name(element.tag)


def inner_markup(element: Element) -> str:
    """Text of an element including nested child markup."""
    parts = [element.text or ""]
    for child in element:
        # tostring() also serializes the child's tail
        parts.append(tostring(child, encoding="unicode"))
    return "".join(parts)


class ContentParser:
    """Builds content records from staged documents."""

    def __init__(
        self,
        taxonomy: TagRegistry,
        publishing: Optional[PublishingSettings] = None,
        staging: Optional[StagingSettings] = None,
    ):
        """Initialize the parser.

        Args:
            taxonomy: Where keywords are registered as tags
            publishing: Status/author/category defaults for new records
            staging: Asset folder token and public asset base URL
        """
        self.taxonomy = taxonomy
        self.publishing = publishing or PublishingSettings()
        self.staging = staging or StagingSettings()
        self.logger = get_logger_for_component("content_parser")

    def parse(self, doc: StagedDocument) -> ContentRecord:
        """Parse a staged document.

        Registers each keyword with the taxonomy; no other side effects.

        Raises:
            MalformedDocumentError: Unreadable file, invalid XML, or no title
        """
        root = self._load(doc)

        title = self._field_text(root, "title", markup=False)
        if not title:
            raise MalformedDocumentError(
                f"{doc.local_path.name} has no title",
                path=str(doc.local_path),
                error_code=ErrorCode.DOCUMENT_MISSING_TITLE,
            )

        body_html = self.build_body(
            uid=doc.uid,
            subheader=self._field_text(root, "subheader"),
            abstract=self._field_text(root, "abstract"),
            author=self._field_text(root, "author"),
            bodytext=self._field_text(root, "bodytext"),
            copyright_notice=self._field_text(root, "copyright"),
        )

        tags = self._register_keywords(self._field_text(root, "keywords", markup=False), doc)

        return ContentRecord(
            title=title,
            slug=slugify(title),
            body_html=body_html,
            tags=tags,
            author_id=self.publishing.author_id,
            category_id=self.publishing.category_id,
            status=RecordStatus(self.publishing.post_status.value),
            source_uid=doc.uid,
        )

    def build_body(
        self,
        uid: str,
        subheader: str = "",
        abstract: str = "",
        author: str = "",
        bodytext: str = "",
        copyright_notice: str = "",
    ) -> str:
        """Assemble body markup. Empty fields produce no markup."""
        parts = []
        if subheader:
            parts.append(f"<h2>{subheader}</h2>")
        if abstract:
            parts.append(f"<p>{META_SPAN.format(label='Abstract')} {abstract}</p>")
        if author:
            parts.append(f"<p>{META_SPAN.format(label='Author')} {author}</p>")
        if bodytext:
            parts.append(self.rewrite_asset_paths(bodytext, uid))
        if copyright_notice:
            parts.append(f"<p>{META_SPAN.format(label='Copyright')} {copyright_notice}</p>")
        return "\n".join(parts)

    def rewrite_asset_paths(self, bodytext: str, uid: str) -> str:
        """Point relative asset references at the public asset URL of this document.

        References to assets stored under a different local name follow the
        rename map written next to the assets.
        """
        base = f"{self.staging.asset_base_url.rstrip('/')}/{uid}/"
        renamed = load_asset_name_map(Path(self.staging.root) / self.staging.asset_folder / uid)
        pattern = re.compile(re.escape(f"{self.staging.asset_folder}/") + r"""([^"'\s<>?#)]*)""")

        def _target(match) -> str:
            name = match.group(1)
            local = renamed.get(name) or renamed.get(unquote(name))
            return base + (quote(local) if local else name)

        return pattern.sub(_target, bodytext)

    def _load(self, doc: StagedDocument) -> Element:
        path = doc.local_path
        try:
            data = path.read_bytes()
        except OSError as e:
            raise MalformedDocumentError(f"Cannot read {path.name}: {e}", path=str(path)) from e

        if not data.strip():
            raise MalformedDocumentError(f"{path.name} is empty", path=str(path))

        try:
            root = ET.fromstring(data)
        except ET.ParseError as e:
            raise MalformedDocumentError(f"Invalid XML in {path.name}: {e}", path=str(path)) from e
        except DefusedXmlException as e:
            raise MalformedDocumentError(
                f"Rejected unsafe XML in {path.name}: {e}", path=str(path)
            ) from e
        except (ValueError, LookupError) as e:
            raise MalformedDocumentError(
                f"Cannot decode {path.name}: {e}",
                path=str(path),
                error_code=ErrorCode.DOCUMENT_ENCODING,
            ) from e

        _strip_namespaces(root)
        return root

    @staticmethod
    def _field_text(root: Element, name: str, markup: bool = True) -> str:
        element = root.find(name)
        if element is None:
            return ""
        text = inner_markup(element) if markup else "".join(element.itertext())
        return text.strip()

    def _register_keywords(self, raw: str, doc: StagedDocument) -> List[str]:
        tags = []
        for keyword in split_keywords(raw):
            try:
                self.taxonomy.ensure_tag(keyword)
            except Exception as e:
                self.logger.warning(
                    f"Skipping keyword {keyword!r} of {doc.local_path.name}: {e}",
                    extra={"path": str(doc.local_path)},
                )
                continue
            tags.append(keyword)
        return tags
