"""Helpers for the XML documents returned by S3 and STS."""

import xml.etree.ElementTree as ET
from typing import Optional


def parse_document(content: bytes) -> ET.Element:
    """Parse an XML body and strip namespaces from every tag.

    Raises:
        xml.etree.ElementTree.ParseError: If the body is not well-formed XML.
    """
    root = ET.fromstring(content)
    for element in root.iter():
        if isinstance(element.tag, str) and "}" in element.tag:
            element.tag = element.tag.split("}", 1)[1]
    return root


def find_text(element: ET.Element, path: str) -> Optional[str]:
    node = element.find(path)
    if node is None or node.text is None:
        return None
    return node.text.strip()


def error_fields(root: ET.Element) -> Optional[dict[str, Optional[str]]]:
    """Extract code, message, request id and resource from an error document.

    Understands the STS form
    <ErrorResponse><Error><Code/><Message/></Error><RequestId/></ErrorResponse>
    and the S3 form <Error><Code/><Message/><RequestId/><Resource/></Error>.
    Returns None for any other document.
    """
    if root.tag == "ErrorResponse":
        error = root.find("Error")
        if error is None:
            return None
        return {
            "code": find_text(error, "Code"),
            "message": find_text(error, "Message"),
            "request_id": find_text(root, "RequestId") or find_text(error, "RequestId"),
            "resource": None,
        }

    if root.tag == "Error":
        return {
            "code": find_text(root, "Code"),
            "message": find_text(root, "Message"),
            "request_id": find_text(root, "RequestId"),
            "resource": find_text(root, "Resource"),
        }

    return None
