"""Facility website scraping for public contact emails."""

from __future__ import annotations

import logging
import re
import time
from typing import List, Optional, Set, Tuple
from urllib import robotparser
from urllib.parse import urljoin, urlparse, urlunparse

import requests
from bs4 import BeautifulSoup

from daycare_sync.vendors.http import USER_AGENT

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 10
REQUEST_DELAY = 1.0
MAX_PAGES_PER_DOMAIN = 3
CONTACT_PAGE_CANDIDATES = ("/contact", "/contact-us", "/contactus", "/about", "/enroll", "/admissions")

EMAIL_REGEX = re.compile(r"[A-Z0-9._%+-]+@[A-Z0-9.-]+\.[A-Z]{2,}", re.IGNORECASE)
# Asset names like logo@2x.png match the email pattern.
_IGNORED_EMAIL_SUFFIXES = (".png", ".jpg", ".jpeg", ".gif", ".svg", ".webp")


def sanitize_website(raw_url: str) -> Optional[str]:
    """Normalise raw website strings into absolute https URLs."""

    if not raw_url:
        return None

    url = raw_url.strip()
    if not url:
        return None

    parsed = urlparse(url, scheme="https")
    if not parsed.netloc:
        parsed = urlparse(f"https://{url}")

    if not parsed.netloc:
        return None

    normalized_path = parsed.path or "/"
    if not normalized_path.startswith("/"):
        normalized_path = f"/{normalized_path}"

    return urlunparse(parsed._replace(path=normalized_path, fragment="", query=""))


def extract_emails(text: str) -> List[str]:
    """Return unique emails discovered in a text blob."""

    candidates = {match.group(0).lower() for match in EMAIL_REGEX.finditer(text or "")}
    return sorted(email for email in candidates if not email.endswith(_IGNORED_EMAIL_SUFFIXES))


def extract_mailto_links(soup: BeautifulSoup) -> Set[str]:
    emails: Set[str] = set()
    for anchor in soup.find_all("a", href=True):
        href = anchor["href"].strip()
        if href.lower().startswith("mailto:"):
            email = href.split(":", 1)[1].split("?")[0].strip().lower()
            if email:
                emails.add(email)
    return emails


class ContactEmailScraper:
    """Crawl the home page and a few contact-like pages of one facility site."""

    def __init__(
        self,
        website: str,
        *,
        session: Optional[requests.Session] = None,
        max_pages: int = MAX_PAGES_PER_DOMAIN,
        delay: float = REQUEST_DELAY,
        respect_robots: bool = True,
    ) -> None:
        sanitized = sanitize_website(website)
        if not sanitized:
            raise ValueError("A valid website URL is required for scraping")

        self.root_url = sanitized
        parsed = urlparse(self.root_url)
        self.domain = parsed.netloc.lower().removeprefix("www.")
        self.max_pages = max_pages
        self.delay = delay
        self.session = session or requests.Session()
        self.session.headers.setdefault("User-Agent", USER_AGENT)
        self.session.headers.setdefault("Accept", "text/html,application/xhtml+xml")
        self._robots = self._load_robot_rules(parsed) if respect_robots else None

    @staticmethod
    def _load_robot_rules(parsed_url) -> Optional[robotparser.RobotFileParser]:
        robots_url = urlunparse((parsed_url.scheme, parsed_url.netloc, "/robots.txt", "", "", ""))
        parser_obj = robotparser.RobotFileParser()
        parser_obj.set_url(robots_url)
        try:
            parser_obj.read()
            return parser_obj
        except OSError as exc:
            logger.debug("Unable to read robots.txt from %s: %s", robots_url, exc)
            return None

    def _is_same_domain(self, url: str) -> bool:
        netloc = urlparse(url).netloc
        return not netloc or netloc.lower().removeprefix("www.") == self.domain

    def _is_allowed(self, url: str) -> bool:
        if not self._robots:
            return True
        return self._robots.can_fetch(USER_AGENT, urlparse(url).path or "/")

    def _fetch(self, url: str) -> Optional[Tuple[str, BeautifulSoup]]:
        try:
            response = self.session.get(url, timeout=REQUEST_TIMEOUT, allow_redirects=True)
        except requests.RequestException as exc:
            logger.warning("Failed to fetch %s: %s", url, exc)
            return None
        if response.status_code >= 400:
            logger.debug("Skipping %s (HTTP %s)", url, response.status_code)
            return None
        if "text/html" not in response.headers.get("Content-Type", "").lower():
            return None
        return response.url, BeautifulSoup(response.text, "html.parser")

    def _contact_links(self, base_url: str, soup: BeautifulSoup) -> List[str]:
        found: List[str] = []
        for anchor in soup.find_all("a", href=True):
            absolute = urljoin(base_url, anchor["href"].strip())
            if not self._is_same_domain(absolute):
                continue
            parsed = urlparse(absolute)
            if any(candidate in parsed.path.lower() for candidate in CONTACT_PAGE_CANDIDATES):
                normalized = urlunparse((parsed.scheme, parsed.netloc, parsed.path, "", "", ""))
                if normalized not in found:
                    found.append(normalized)
        return found

    def find_emails(self) -> List[str]:
        queue: List[str] = [self.root_url]
        visited: Set[str] = set()
        emails: Set[str] = set()

        while queue and len(visited) < self.max_pages:
            url = queue.pop(0)
            if url in visited or not self._is_allowed(url):
                continue
            if visited and self.delay:
                time.sleep(self.delay)
            fetched = self._fetch(url)
            visited.add(url)
            if not fetched:
                continue
            final_url, soup = fetched
            emails.update(extract_mailto_links(soup))
            emails.update(extract_emails(soup.get_text(" ", strip=True)))
            for candidate in self._contact_links(final_url, soup):
                if candidate not in visited and candidate not in queue:
                    queue.append(candidate)

        return sorted(emails)

    def close(self) -> None:
        self.session.close()

    def __enter__(self) -> "ContactEmailScraper":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def first_contact_email(website: str) -> Optional[str]:
    """Best-effort lookup; any failure yields None so enrichment never blocks a record."""
    try:
        with ContactEmailScraper(website) as scraper:
            emails = scraper.find_emails()
    except (ValueError, requests.RequestException) as exc:
        logger.debug("Contact email lookup failed for %s: %s", website, exc)
        return None
    domain = urlparse(sanitize_website(website) or "").netloc.lower().removeprefix("www.")
    # Prefer an address on the facility's own domain.
    for email in emails:
        if domain and email.endswith("@" + domain):
            return email
    return emails[0] if emails else None
