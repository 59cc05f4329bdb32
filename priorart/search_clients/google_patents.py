import re
import requests
from bs4 import BeautifulSoup
from typing import Any, Dict, List, Optional
from loguru import logger
from config import settings
from priorart.errors import UpstreamFailure
from priorart.models import Citation, PatentCandidate, PatentDetail
from priorart.search_clients.base import BaseSearchClient


class GooglePatentsClient(BaseSearchClient):
    def __init__(self, api_key: Optional[str] = None, base_url: Optional[str] = None):
        self.api_key = api_key or settings.SERPAPI_KEY
        self.base_url = base_url or settings.SERPAPI_BASE_URL
        self.timeout = settings.SEARCH_TIMEOUT_SECONDS
        self.max_description_length = settings.MAX_DESCRIPTION_LENGTH
        self.session = requests.Session()
        if not self.api_key:
            logger.warning("[GooglePatents] SERPAPI_KEY is missing.")

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    @staticmethod
    def _clean_html(html: str) -> str:
        """清洗说明书页面 HTML，只保留正文文本"""
        if not html:
            return ""
        soup = BeautifulSoup(html, "html.parser")
        for tag in soup(["style", "script", "header", "footer", "nav", "img"]):
            tag.decompose()
        text = soup.get_text(" ")
        return re.sub(r"\s+", " ", text).strip()

    def _normalize_result(self, raw_item: Dict) -> PatentCandidate:
        """
        标准化检索列表结果
        """
        return PatentCandidate(
            patent_id=raw_item.get("patent_id", ""),
            title=raw_item.get("title", "") or "",
            assignee=raw_item.get("assignee", "") or "",
            filing_date=raw_item.get("filing_date", "") or "",
            snippet=raw_item.get("snippet", "") or "",
            patent_link=raw_item.get("patent_link", "") or "",
            family_id=raw_item.get("family_id"),
        )

    @staticmethod
    def _normalize_citations(raw_list: Any, direction: str) -> List[Citation]:
        citations = []
        for item in raw_list or []:
            if not isinstance(item, dict):
                continue
            patent_id = item.get("patent_id")
            if not patent_id and item.get("publication_number"):
                patent_id = f"patent/{item['publication_number']}/en"
            if not patent_id:
                continue
            citations.append(
                Citation(
                    patent_id=patent_id,
                    title=item.get("title", "") or "",
                    family_id=item.get("family_id"),
                    direction=direction,
                )
            )
        return citations

    def _do_request(self, params: Dict) -> Dict:
        """统一请求处理"""
        if not self.api_key:
            raise UpstreamFailure("SERPAPI_KEY is not configured")

        try:
            resp = self.session.get(
                self.base_url,
                params={**params, "api_key": self.api_key},
                timeout=self.timeout,
            )
            resp.raise_for_status()
            data = resp.json()
        except Exception as e:
            logger.error(f"[GooglePatents] Request failed ({params.get('engine')}): {e}")
            raise UpstreamFailure(f"Patent search error: {e}") from e

        if "error" in data:
            logger.error(f"[GooglePatents] API Error: {data['error']}")
            raise UpstreamFailure(f"Patent search error: {data['error']}")
        return data

    def search(self, query: str, limit: int = 20) -> List[PatentCandidate]:
        """关键词检索"""
        params = {
            "engine": "google_patents",
            "q": query,
            "num": min(limit, 100),
            "tbm": "patents",
        }
        data = self._do_request(params)
        raw_results = data.get("organic_results", [])
        return [self._normalize_result(item) for item in raw_results if item.get("patent_id")]

    def _fetch_description(self, description_link: str, fallback: str) -> str:
        """尽力拉取说明书全文，失败时退回详情接口自带的描述"""
        try:
            resp = self.session.get(description_link, timeout=self.timeout)
            resp.raise_for_status()
            return self._clean_html(resp.text)
        except Exception as e:
            logger.warning(f"[GooglePatents] Could not fetch description link: {e}")
            return fallback

    def get_details(self, patent_id: str) -> PatentDetail:
        """专利详情 + 引证"""
        data = self._do_request({"engine": "google_patents_details", "patent_id": patent_id})

        description_link = data.get("description_link", "") or ""
        if description_link:
            full_description = self._fetch_description(description_link, data.get("description", "") or "")
        else:
            full_description = data.get("description", "") or ""
        full_description = full_description[: self.max_description_length]

        assignees = data.get("assignees")
        if not isinstance(assignees, list):
            assignees = [data["assignee"]] if data.get("assignee") else []

        inventors = data.get("inventors") or []
        inventor = data.get("inventor") or (inventors[0].get("name") if inventors and isinstance(inventors[0], dict) else "")

        claims = data.get("claims", "")
        if isinstance(claims, list):
            claims = "\n".join(str(c) for c in claims)

        return PatentDetail(
            patent_id=patent_id,
            title=data.get("title") or "N/A",
            assignee=assignees[0] if assignees else "N/A",
            assignees=assignees,
            inventor=inventor or "N/A",
            filing_date=data.get("filing_date") or "N/A",
            publication_number=data.get("publication_number") or "N/A",
            publication_date=data.get("publication_date", "") or "",
            country=data.get("country", "") or "",
            pdf=data.get("pdf", "") or "",
            abstract=data.get("abstract", "") or "",
            claims=claims or "",
            full_description=full_description,
            description_link=description_link,
            family_id=data.get("family_id"),
            forward_citations=self._normalize_citations(
                (data.get("patent_citations") or {}).get("original"), "forward"
            ),
            backward_citations=self._normalize_citations(
                (data.get("cited_by") or {}).get("original"), "backward"
            ),
        )
