"""HTML extraction for the Nkiri search index, detail pages and gateways.

Every function here is pure: it takes page markup plus the selectors from the
site config and returns plain data. Network access lives in
``scraping_service`` so these heuristics can be exercised without it.
"""

from __future__ import annotations

import re
import urllib.parse
from typing import Any, Iterable

from bs4 import BeautifulSoup, Tag

from ...errors import ParseError
from ...utils import filename_from_url
from ..link_data import ResolvedLink, SearchCandidate

DEFAULT_DIRECT_LABEL = "Direct Link"
_GENERIC_LABEL_PATTERN = re.compile(r"direct link", re.IGNORECASE)


def host_matches(url: str, allowed_hosts: Iterable[str]) -> bool:
    """True when ``url``'s host is one of ``allowed_hosts`` or a subdomain of one."""
    try:
        host = (urllib.parse.urlsplit(url).hostname or "").lower()
    except ValueError:
        return False
    if not host:
        return False
    for allowed in allowed_hosts:
        allowed = allowed.lower()
        if host == allowed or host.endswith(f".{allowed}"):
            return True
    return False


def parse_search_results(
    html: str, selectors: dict[str, Any], base_url: str
) -> list[SearchCandidate]:
    """Extracts (title, detail page) pairs from a search results page in document order."""
    soup = BeautifulSoup(html, "lxml")
    candidates: list[SearchCandidate] = []

    for item in soup.select(selectors["result_item"]):
        if not isinstance(item, Tag):
            continue

        anchor = item.select_one(selectors["thumbnail_link"])
        heading = item.select_one(selectors["title_fallback"])

        title = ""
        href = None
        if isinstance(anchor, Tag):
            href = anchor.get("href")
            image = anchor.find("img")
            if isinstance(image, Tag):
                alt = image.get("alt")
                if isinstance(alt, str):
                    title = alt.strip()
        if isinstance(heading, Tag):
            if not title:
                title = heading.get_text(strip=True)
            if not href:
                href = heading.get("href")

        if not isinstance(href, str) or not href.strip() or not title:
            continue
        candidates.append(
            SearchCandidate(
                title=title, detail_url=urllib.parse.urljoin(base_url, href.strip())
            )
        )

    return candidates


def parse_direct_links(
    html: str, page_url: str, direct_hosts: Iterable[str]
) -> list[ResolvedLink]:
    """Finds anchors pointing straight at a known file host."""
    soup = BeautifulSoup(html, "lxml")
    hosts = list(direct_hosts)
    links: list[ResolvedLink] = []

    for tag in soup.find_all("a", href=True):
        if not isinstance(tag, Tag):
            continue
        href = tag.get("href")
        if not isinstance(href, str):
            continue
        url = urllib.parse.urljoin(page_url, href.strip())
        if not host_matches(url, hosts):
            continue
        label = tag.get_text(strip=True) or DEFAULT_DIRECT_LABEL
        links.append(ResolvedLink(label=label, url=url))

    return links


def parse_gateway_buttons(
    html: str,
    page_url: str,
    selectors: dict[str, Any],
    gateway_hosts: Iterable[str],
) -> list[tuple[str, str]]:
    """Returns ``(label, gateway_url)`` for download buttons that lead to an unlock page."""
    soup = BeautifulSoup(html, "lxml")
    hosts = list(gateway_hosts)
    buttons: list[tuple[str, str]] = []

    for tag in soup.select(selectors["gateway_buttons"]):
        if not isinstance(tag, Tag):
            continue
        href = tag.get("href")
        if not isinstance(href, str) or not href.strip():
            continue
        url = urllib.parse.urljoin(page_url, href.strip())
        if not host_matches(url, hosts):
            continue

        label_tag = tag.select_one(selectors["button_label"])
        label = label_tag.get_text(strip=True) if isinstance(label_tag, Tag) else ""
        buttons.append((label or tag.get_text(strip=True), url))

    return buttons


def parse_hidden_form_fields(html: str, form_name: str) -> dict[str, str]:
    """
    Collects the hidden inputs of the gateway's unlock form.

    Raises:
        ParseError: if the page has no form with that name.
    """
    soup = BeautifulSoup(html, "lxml")
    form = soup.find("form", attrs={"name": form_name})
    if not isinstance(form, Tag):
        raise ParseError(f"Form '{form_name}' not found on gateway page")

    fields: dict[str, str] = {}
    for field in form.find_all("input", attrs={"type": "hidden"}):
        if not isinstance(field, Tag):
            continue
        name = field.get("name")
        if not isinstance(name, str) or not name:
            continue
        value = field.get("value")
        fields[name] = value if isinstance(value, str) else ""
    return fields


def is_generic_label(label: str) -> bool:
    return bool(_GENERIC_LABEL_PATTERN.search(label)) or label.strip().lower() == "download"


def relabel_from_url(label: str, final_url: str) -> str:
    """Swaps a placeholder button label for the file name in the final URL."""
    if not is_generic_label(label):
        return label
    return filename_from_url(final_url, decode=False) or label
