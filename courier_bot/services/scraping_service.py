# courier_bot/services/scraping_service.py

from __future__ import annotations

import asyncio
import urllib.parse
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Iterable

import httpx

from ..config import BROWSER_USER_AGENT, REQUEST_TIMEOUT_SECONDS, logger
from ..errors import CourierError, FetchError, ParseError, UpstreamRedirectMissing
from .link_data import ResolvedLink, SearchCandidate
from .scrapers import (
    default_site_config,
    parse_direct_links,
    parse_gateway_buttons,
    parse_hidden_form_fields,
    parse_search_results,
    relabel_from_url,
)

DEFAULT_GATEWAY_CONCURRENCY = 4


def build_http_client(**kwargs: Any) -> httpx.AsyncClient:
    """
    Creates the client used for scraping. Certificate checks are disabled
    because the file and gateway hosts are known to serve broken chains.
    """
    options: dict[str, Any] = {
        "verify": False,
        "timeout": REQUEST_TIMEOUT_SECONDS,
        "follow_redirects": True,
        "headers": {"User-Agent": BROWSER_USER_AGENT},
    }
    options.update(kwargs)
    return httpx.AsyncClient(**options)


@asynccontextmanager
async def _client_scope(
    client: httpx.AsyncClient | None,
) -> AsyncIterator[httpx.AsyncClient]:
    # Injected clients belong to the caller and are left open.
    if client is not None:
        yield client
        return
    async with build_http_client() as owned:
        yield owned


async def _fetch_html(client: httpx.AsyncClient, url: str) -> str:
    try:
        response = await client.get(url)
        response.raise_for_status()
    except httpx.HTTPError as e:
        raise FetchError(f"GET {url} failed: {e}") from e
    return response.text


def build_search_url(query: str, site_config: dict[str, Any]) -> str:
    formatted_query = urllib.parse.quote_plus(query.strip())
    search_path = site_config["search_path"].format(query=formatted_query)
    return urllib.parse.urljoin(
        f"{site_config['base_url'].rstrip('/')}/", search_path.lstrip("/")
    )


async def search_titles(
    query: str,
    *,
    client: httpx.AsyncClient | None = None,
    site_config: dict[str, Any] | None = None,
) -> list[SearchCandidate]:
    """
    Queries the search index and returns candidates in page order.

    Never raises: network failures, unexpected markup and zero matches all
    produce an empty list.
    """
    if not isinstance(query, str) or not query.strip():
        logger.warning("[SCRAPER] Empty query provided to search_titles")
        return []

    try:
        config = site_config or default_site_config()
        search_url = build_search_url(query, config)
        logger.info(f"[SCRAPER] {config['site_name']}: Searching '{query}' at {search_url}")

        async with _client_scope(client) as http:
            html = await _fetch_html(http, search_url)

        candidates = parse_search_results(
            html, config["search_selectors"], config["base_url"]
        )
    except CourierError as e:
        logger.error(f"[SCRAPER ERROR] Search for '{query}' failed: {e}")
        return []
    except Exception as e:
        logger.error(
            f"[SCRAPER ERROR] Unexpected error searching '{query}': {e}", exc_info=True
        )
        return []

    logger.info(f"[SCRAPER] Found {len(candidates)} candidate(s) for '{query}'.")
    return candidates


def dedupe_links(links: Iterable[ResolvedLink]) -> list[ResolvedLink]:
    """Drops links whose URL was already seen, keeping first-seen order."""
    seen: set[str] = set()
    unique: list[ResolvedLink] = []
    for link in links:
        if link.url in seen:
            continue
        seen.add(link.url)
        unique.append(link)
    return unique


async def _resolve_gateway(
    client: httpx.AsyncClient, label: str, gateway_url: str, form_name: str
) -> ResolvedLink:
    """
    Replays a gateway's hidden unlock form and returns the file URL it
    redirects to.

    Raises:
        FetchError: the gateway page or the POST failed outright.
        ParseError: the unlock form is missing or has no hidden fields.
        UpstreamRedirectMissing: the POST was accepted but carried no Location.
    """
    page_html = await _fetch_html(client, gateway_url)
    form_fields = parse_hidden_form_fields(page_html, form_name)
    if not form_fields:
        raise ParseError(f"No hidden fields in form '{form_name}' at {gateway_url}")

    try:
        response = await client.post(
            gateway_url,
            data=form_fields,
            headers={"Referer": gateway_url},
            follow_redirects=False,
        )
        response.raise_for_status()
    except httpx.HTTPStatusError as e:
        # A 3xx is the expected answer; raise_for_status reports it as an error.
        response = e.response
        if not response.is_redirect:
            raise FetchError(f"POST {gateway_url} failed: {e}") from e
    except httpx.HTTPError as e:
        raise FetchError(f"POST {gateway_url} failed: {e}") from e

    location = response.headers.get("location")
    if not location:
        raise UpstreamRedirectMissing(
            f"Gateway {gateway_url} answered {response.status_code} without Location"
        )

    final_url = urllib.parse.urljoin(gateway_url, location)
    return ResolvedLink(label=relabel_from_url(label, final_url), url=final_url)


async def _resolve_gateway_safely(
    client: httpx.AsyncClient,
    label: str,
    gateway_url: str,
    form_name: str,
    semaphore: asyncio.Semaphore,
) -> ResolvedLink | None:
    async with semaphore:
        logger.info(f"[SCRAPER] Processing gateway: {gateway_url}")
        try:
            return await _resolve_gateway(client, label, gateway_url, form_name)
        except CourierError as e:
            logger.warning(f"[SCRAPER] Skipping gateway {gateway_url}: {e}")
        except Exception as e:
            logger.error(
                f"[SCRAPER ERROR] Unexpected error resolving {gateway_url}: {e}",
                exc_info=True,
            )
    return None


async def resolve_download_links(
    detail_url: str,
    *,
    client: httpx.AsyncClient | None = None,
    site_config: dict[str, Any] | None = None,
) -> list[ResolvedLink]:
    """
    Collects the final download URLs reachable from a detail page.

    Direct file-host links are taken as they are. Gateway buttons are each
    unlocked independently, so one failing gateway only drops its own entry.
    The merged list keeps direct links first and holds no duplicate URL.
    Never raises; returns an empty list when the detail page itself fails.
    """
    try:
        config = site_config or default_site_config()
        logger.info(f"[SCRAPER] Fetching detail page: {detail_url}")

        async with _client_scope(client) as http:
            html = await _fetch_html(http, detail_url)

            direct_links = parse_direct_links(html, detail_url, config["direct_hosts"])
            gateway_buttons = parse_gateway_buttons(
                html, detail_url, config["detail_selectors"], config["gateway_hosts"]
            )
            logger.info(
                f"[SCRAPER] Detail page has {len(direct_links)} direct link(s) and "
                f"{len(gateway_buttons)} gateway button(s)."
            )

            semaphore = asyncio.Semaphore(
                int(config.get("gateway_concurrency", DEFAULT_GATEWAY_CONCURRENCY))
            )
            form_name = config["gateway_form"]["name"]
            gateway_links = await asyncio.gather(
                *(
                    _resolve_gateway_safely(http, label, url, form_name, semaphore)
                    for label, url in gateway_buttons
                )
            )
    except CourierError as e:
        logger.error(f"[SCRAPER ERROR] Could not resolve links for {detail_url}: {e}")
        return []
    except Exception as e:
        logger.error(
            f"[SCRAPER ERROR] Unexpected error resolving {detail_url}: {e}",
            exc_info=True,
        )
        return []

    links = dedupe_links(
        [*direct_links, *(link for link in gateway_links if link is not None)]
    )
    logger.info(f"[SCRAPER] Resolved {len(links)} unique link(s) for {detail_url}.")
    return links


__all__ = [
    "build_http_client",
    "build_search_url",
    "dedupe_links",
    "resolve_download_links",
    "search_titles",
]
