from abc import ABC, abstractmethod
from typing import List

from priorart.models import PatentCandidate, PatentDetail


class BaseSearchClient(ABC):
    """
    所有专利检索平台的抽象基类
    """

    @property
    def configured(self) -> bool:
        return True

    @abstractmethod
    def search(self, query: str, limit: int = 20) -> List[PatentCandidate]:
        """
        执行关键词检索
        :param query: 布尔检索式
        :param limit: 数量限制
        :return: 统一格式的候选专利列表
        :raises UpstreamFailure: 请求失败
        """
        pass

    @abstractmethod
    def get_details(self, patent_id: str) -> PatentDetail:
        """
        获取单篇专利详情 (含引证与截断后的说明书全文)
        :raises UpstreamFailure: 请求失败
        """
        pass
