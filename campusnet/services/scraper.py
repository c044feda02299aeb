"""
University news scraper.

The source site has no feed, so items are pulled out of the home page
markup with a list of candidate selectors; the first selector that yields
anything wins.  When the page cannot be fetched or nothing matches, a fixed
set of sample items is returned instead so the news tab is never empty.
"""
import logging
import re
from datetime import timedelta
from urllib.parse import urljoin

import httpx
from bs4 import BeautifulSoup

from campusnet.config import settings
from campusnet.timeutils import utcnow

logger = logging.getLogger(__name__)

ITEM_SELECTORS = [".news-item", ".event-item", "article", ".post", ".news-card", ".card"]
TITLE_SELECTOR = "h2, h3, h4, .title, .heading"
DESCRIPTION_SELECTOR = "p, .description, .excerpt"
MAX_ITEMS = 20
MAX_DESCRIPTION = 300
USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"

# Checked in order; the first pattern that matches decides the category.
CATEGORY_PATTERNS = [
    ("placements", re.compile(r"placement|recruit|job|career|hired|offer")),
    ("events", re.compile(r"event|fest|workshop|seminar|conference|webinar")),
    ("academics", re.compile(r"academic|course|curriculum|exam|result|admission")),
    ("achievements", re.compile(r"award|achievement|rank|win|medal|prize")),
]


def categorize(title: str, description: str = "") -> str:
    text = f"{title} {description}".lower()
    for category, pattern in CATEGORY_PATTERNS:
        if pattern.search(text):
            return category
    return "news"


def _absolute(url: str, base_url: str) -> str:
    return urljoin(base_url.rstrip("/") + "/", url)


def parse_news(html: str, base_url: str) -> list[dict]:
    """Extract news items from a page.  Only elements with a title and a link count."""
    soup = BeautifulSoup(html, "html.parser")
    for selector in ITEM_SELECTORS:
        elements = soup.select(selector)
        if not elements:
            continue

        items = []
        for element in elements[:MAX_ITEMS]:
            title_el = element.select_one(TITLE_SELECTOR)
            title = title_el.get_text(strip=True) if title_el else ""
            desc_el = element.select_one(DESCRIPTION_SELECTOR)
            description = desc_el.get_text(strip=True) if desc_el else ""
            link = element.find("a", href=True)
            image = element.find("img", src=True)
            if not title or link is None:
                continue
            items.append({
                "title": title,
                "description": description[:MAX_DESCRIPTION],
                "source_url": _absolute(link["href"], base_url),
                "image_url": _absolute(image["src"], base_url) if image is not None else "",
                "category": categorize(title, description),
                "published_date": utcnow(),
            })
        if items:
            return items
    return []


_FALLBACK = [
    (
        "Bennett University - Leading Private University in Greater Noida",
        "Bennett University, established by The Times Group, offers world-class education with "
        "industry-integrated curriculum, state-of-the-art infrastructure, and excellent placement opportunities.",
        "https://www.bennett.edu.in/",
        "https://images.unsplash.com/photo-1541339907198-e08756dedf3f?w=800",
        "news", 1,
    ),
    (
        "B.Tech Programs at Bennett University",
        "Explore cutting-edge B.Tech programs in Computer Science, AI & ML, Data Science, Cybersecurity, "
        "and more. Learn from industry experts with hands-on training.",
        "https://www.bennett.edu.in/engineering/",
        "https://images.unsplash.com/photo-1581092795360-fd1ca04f0952?w=800",
        "academics", 3,
    ),
    (
        "Placements at Bennett University",
        "Bennett University consistently achieves excellent placement records with top recruiters from IT, "
        "consulting, core engineering, and FMCG sectors visiting campus.",
        "https://www.bennett.edu.in/placements/",
        "https://images.unsplash.com/photo-1521737604893-d14cc237f11d?w=800",
        "placements", 5,
    ),
    (
        "School of Computer Science & Engineering",
        "The School of CSE offers industry-relevant programs with focus on emerging technologies, "
        "research opportunities, and strong industry connections.",
        "https://www.bennett.edu.in/schools/school-of-computer-science-engineering/",
        "https://images.unsplash.com/photo-1517694712202-14dd9538aa97?w=800",
        "academics", 7,
    ),
    (
        "Campus Life at Bennett University",
        "Experience vibrant campus life with modern facilities, sports complexes, cultural events, "
        "technical fests, and clubs catering to diverse interests.",
        "https://www.bennett.edu.in/campus-life/",
        "https://images.unsplash.com/photo-1523050854058-8df90110c9f1?w=800",
        "events", 10,
    ),
    (
        "Research & Innovation at Bennett",
        "Bennett University encourages research and innovation through dedicated labs, funding support, "
        "and collaborations with leading institutions worldwide.",
        "https://www.bennett.edu.in/research/",
        "https://images.unsplash.com/photo-1532094349884-543bc11b234d?w=800",
        "achievements", 12,
    ),
    (
        "Admissions Open for 2025-26",
        "Apply now for undergraduate and postgraduate programs. Multiple scholarship opportunities "
        "available for meritorious students.",
        "https://www.bennett.edu.in/admissions/",
        "https://images.unsplash.com/photo-1427504494785-3a9ca7044f45?w=800",
        "news", 15,
    ),
    (
        "International Collaborations & Exchange Programs",
        "Bennett University has partnerships with 100+ international universities offering student "
        "exchange programs and dual degree opportunities.",
        "https://www.bennett.edu.in/international-collaborations/",
        "https://images.unsplash.com/photo-1523580846011-d3a5bc25702b?w=800",
        "news", 18,
    ),
    (
        "Sports & Recreation Facilities",
        "World-class sports infrastructure including cricket ground, football field, basketball courts, "
        "gym, and indoor sports complex.",
        "https://www.bennett.edu.in/sports/",
        "https://images.unsplash.com/photo-1461896836934-ffe607ba8211?w=800",
        "events", 20,
    ),
    (
        "Bennett University Rankings & Accreditations",
        "Bennett University is recognized by UGC, accredited by NAAC, and consistently ranks among "
        "top private universities in India.",
        "https://www.bennett.edu.in/why-bennett/rankings-accreditations/",
        "https://images.unsplash.com/photo-1562774053-701939374585?w=800",
        "achievements", 25,
    ),
]


def fallback_news() -> list[dict]:
    now = utcnow()
    return [
        {
            "title": title,
            "description": description,
            "source_url": source_url,
            "image_url": image_url,
            "category": category,
            "published_date": now - timedelta(days=days_ago),
        }
        for title, description, source_url, image_url, category, days_ago in _FALLBACK
    ]


class NewsScraper:
    def __init__(self, base_url: str | None = None, http: httpx.AsyncClient | None = None) -> None:
        self.base_url = (base_url or settings.NEWS_SOURCE_URL).rstrip("/")
        self._http = http

    async def _fetch(self) -> str:
        if self._http is not None:
            r = await self._http.get(self.base_url, headers={"User-Agent": USER_AGENT})
            r.raise_for_status()
            return r.text
        async with httpx.AsyncClient(timeout=10.0, follow_redirects=True) as http:
            r = await http.get(self.base_url, headers={"User-Agent": USER_AGENT})
            r.raise_for_status()
            return r.text

    async def scrape(self) -> list[dict]:
        """Scraped items, or the sample set when the site yields nothing."""
        items: list[dict] = []
        try:
            items = parse_news(await self._fetch(), self.base_url)
        except httpx.HTTPError as e:
            logger.warning("Unable to scrape %s, using fallback data: %s", self.base_url, e)
        if not items:
            logger.info("No news items found on %s, using fallback data", self.base_url)
            items = fallback_news()
        return items
