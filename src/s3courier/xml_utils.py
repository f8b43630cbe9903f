"""S3 XML request rendering and response parsing helpers for s3courier.

Request bodies are rendered as strings; responses are parsed with
``xml.etree.ElementTree``.  Success documents carry the S3 namespace and
error documents do not, so every lookup goes through the document's own
namespace prefix.
"""

from __future__ import annotations

import xml.etree.ElementTree as ET
from datetime import datetime
from xml.sax.saxutils import escape as _sax_escape

from s3courier.errors import S3Error, make_error
from s3courier.models import DeleteError, IncompleteUpload, ListPage, ObjectInfo

S3_XMLNS = "http://s3.amazonaws.com/doc/2006-03-01/"


def _escape_xml(value: str) -> str:
    """Escape special XML characters in a string value."""
    return _sax_escape(str(value))


# -- Rendering -----------------------------------------------------------------


def render_complete_multipart_upload(parts: list[tuple[int, str]]) -> str:
    """Render the CompleteMultipartUpload manifest.

    Args:
        parts: Ordered ``(part_number, etag)`` pairs.

    Returns:
        An XML string for the completion request body.
    """
    out = [
        '<?xml version="1.0" encoding="UTF-8"?>',
        f'<CompleteMultipartUpload xmlns="{S3_XMLNS}">',
    ]
    for part_number, etag in parts:
        out.append("<Part>")
        out.append(f"<PartNumber>{part_number}</PartNumber>")
        out.append(f"<ETag>{_escape_xml(etag)}</ETag>")
        out.append("</Part>")
    out.append("</CompleteMultipartUpload>")
    return "\n".join(out)


def render_delete_objects(objects: list[tuple[str, str | None]], quiet: bool = True) -> str:
    """Render a multi-object Delete request body.

    Args:
        objects: ``(key, version_id)`` pairs; version id may be None.
        quiet: Ask the server to report only failures.
    """
    out = [
        '<?xml version="1.0" encoding="UTF-8"?>',
        f'<Delete xmlns="{S3_XMLNS}">',
        f"<Quiet>{str(quiet).lower()}</Quiet>",
    ]
    for key, version_id in objects:
        out.append("<Object>")
        out.append(f"<Key>{_escape_xml(key)}</Key>")
        if version_id:
            out.append(f"<VersionId>{_escape_xml(version_id)}</VersionId>")
        out.append("</Object>")
    out.append("</Delete>")
    return "\n".join(out)


def render_tagging(tags: dict[str, str]) -> str:
    out = [
        '<?xml version="1.0" encoding="UTF-8"?>',
        f'<Tagging xmlns="{S3_XMLNS}">',
        "<TagSet>",
    ]
    for key, value in tags.items():
        out.append(f"<Tag><Key>{_escape_xml(key)}</Key><Value>{_escape_xml(value)}</Value></Tag>")
    out.append("</TagSet>")
    out.append("</Tagging>")
    return "\n".join(out)


# -- Parsing -------------------------------------------------------------------


def _parse(body: bytes | str) -> tuple[ET.Element, str]:
    """Parse a document and return its root with the namespace prefix."""
    root = ET.fromstring(body)
    ns = ""
    if root.tag.startswith("{"):
        ns = root.tag[: root.tag.index("}") + 1]
    return root, ns


def _text(parent: ET.Element, ns: str, name: str, default: str | None = None) -> str | None:
    elem = parent.find(f"{ns}{name}")
    if elem is None or elem.text is None:
        return default
    return elem.text


def _bool(parent: ET.Element, ns: str, name: str) -> bool:
    return (_text(parent, ns, name, "false") or "false").strip().lower() == "true"


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse an ISO 8601 timestamp such as ``2026-01-02T03:04:05.000Z``."""
    if not value:
        return None
    return datetime.fromisoformat(value.strip().replace("Z", "+00:00"))


def parse_error(body: bytes, http_status: int, resource: str = "") -> S3Error:
    """Decode an S3 error document into the matching S3Error subclass.

    Args:
        body: The raw response body.
        http_status: The response status code.
        resource: The request path, used when the document names none.

    Raises:
        xml.etree.ElementTree.ParseError: If the body is not XML.
    """
    root, ns = _parse(body)
    known = {"Code", "Message", "Resource", "RequestId", "HostId"}
    extra = {
        child.tag[len(ns) :]: child.text or ""
        for child in root
        if child.tag[len(ns) :] not in known
    }
    return make_error(
        code=_text(root, ns, "Code", "UnknownError"),
        message=_text(root, ns, "Message", ""),
        http_status=http_status,
        resource=_text(root, ns, "Resource", resource),
        request_id=_text(root, ns, "RequestId", ""),
        host_id=_text(root, ns, "HostId", ""),
        extra_fields=extra,
    )


def parse_initiate_multipart_upload(body: bytes) -> str:
    """Return the UploadId from an InitiateMultipartUploadResult."""
    root, ns = _parse(body)
    upload_id = _text(root, ns, "UploadId")
    if not upload_id:
        raise ValueError("InitiateMultipartUploadResult has no UploadId")
    return upload_id


def parse_complete_multipart_upload(body: bytes) -> str:
    """Return the ETag from a CompleteMultipartUploadResult.

    Raises:
        S3Error: If the server returned an error document with status 200,
            which S3 does for completions that fail after streaming began.
    """
    root, ns = _parse(body)
    if root.tag == "Error":
        raise parse_error(body, 200)
    return _text(root, ns, "ETag", "")


def parse_copy_result(body: bytes) -> tuple[str, datetime | None]:
    """Return ``(etag, last_modified)`` from CopyObjectResult or CopyPartResult."""
    root, ns = _parse(body)
    if root.tag == "Error":
        raise parse_error(body, 200)
    return _text(root, ns, "ETag", ""), parse_timestamp(_text(root, ns, "LastModified"))


def _parse_object(elem: ET.Element, ns: str) -> ObjectInfo:
    return ObjectInfo(
        key=_text(elem, ns, "Key", ""),
        size=int(_text(elem, ns, "Size", "0")),
        etag=_text(elem, ns, "ETag"),
        last_modified=parse_timestamp(_text(elem, ns, "LastModified")),
        storage_class=_text(elem, ns, "StorageClass"),
    )


def _common_prefixes(root: ET.Element, ns: str) -> list[str]:
    return [
        _text(cp, ns, "Prefix", "")
        for cp in root.findall(f"{ns}CommonPrefixes")
    ]


def parse_list_objects(body: bytes) -> ListPage:
    """Parse a ListBucketResult, either V1 or V2.

    ``next_marker`` holds the V2 NextContinuationToken or the V1 NextMarker.
    Values are returned as sent; percent-decoding is the caller's concern.
    """
    root, ns = _parse(body)
    items = [_parse_object(elem, ns) for elem in root.findall(f"{ns}Contents")]
    next_marker = _text(root, ns, "NextContinuationToken") or _text(root, ns, "NextMarker")
    return ListPage(
        items=items,
        prefixes=_common_prefixes(root, ns),
        is_truncated=_bool(root, ns, "IsTruncated"),
        next_marker=next_marker,
        encoding_type=_text(root, ns, "EncodingType"),
    )


def parse_list_object_versions(body: bytes) -> ListPage:
    """Parse a ListVersionsResult; versions and delete markers keep document order."""
    root, ns = _parse(body)
    items: list[ObjectInfo] = []
    for elem in root:
        tag = elem.tag[len(ns) :]
        if tag not in ("Version", "DeleteMarker"):
            continue
        info = _parse_object(elem, ns)
        info.version_id = _text(elem, ns, "VersionId")
        info.is_latest = _bool(elem, ns, "IsLatest")
        info.is_delete_marker = tag == "DeleteMarker"
        items.append(info)
    return ListPage(
        items=items,
        prefixes=_common_prefixes(root, ns),
        is_truncated=_bool(root, ns, "IsTruncated"),
        next_marker=_text(root, ns, "NextKeyMarker"),
        next_version_id_marker=_text(root, ns, "NextVersionIdMarker"),
        encoding_type=_text(root, ns, "EncodingType"),
    )


def parse_list_multipart_uploads(body: bytes) -> ListPage:
    root, ns = _parse(body)
    items = [
        IncompleteUpload(
            key=_text(elem, ns, "Key", ""),
            upload_id=_text(elem, ns, "UploadId", ""),
            initiated=parse_timestamp(_text(elem, ns, "Initiated")),
            storage_class=_text(elem, ns, "StorageClass"),
        )
        for elem in root.findall(f"{ns}Upload")
    ]
    return ListPage(
        items=items,
        prefixes=_common_prefixes(root, ns),
        is_truncated=_bool(root, ns, "IsTruncated"),
        next_marker=_text(root, ns, "NextKeyMarker"),
        next_upload_id_marker=_text(root, ns, "NextUploadIdMarker"),
        encoding_type=_text(root, ns, "EncodingType"),
    )


def parse_delete_result(body: bytes) -> list[DeleteError]:
    """Return the failures reported by a DeleteResult."""
    root, ns = _parse(body)
    return [
        DeleteError(
            key=_text(elem, ns, "Key", ""),
            code=_text(elem, ns, "Code", ""),
            message=_text(elem, ns, "Message", ""),
            version_id=_text(elem, ns, "VersionId"),
        )
        for elem in root.findall(f"{ns}Error")
    ]


def parse_tagging(body: bytes) -> dict[str, str]:
    root, ns = _parse(body)
    tags: dict[str, str] = {}
    tag_set = root.find(f"{ns}TagSet")
    if tag_set is None:
        return tags
    for tag in tag_set.findall(f"{ns}Tag"):
        tags[_text(tag, ns, "Key", "")] = _text(tag, ns, "Value", "")
    return tags


def render_create_bucket_configuration(region: str) -> str:
    """Render a CreateBucketConfiguration naming the bucket's region."""
    parts = [
        '<?xml version="1.0" encoding="UTF-8"?>',
        f'<CreateBucketConfiguration xmlns="{S3_XMLNS}">',
        f"<LocationConstraint>{_escape_xml(region)}</LocationConstraint>",
        "</CreateBucketConfiguration>",
    ]
    return "\n".join(parts)
