from typing import Any, Dict, List, Optional

import pytest

from crm_examples.memory_store import MemoryStore


@pytest.fixture
def store():
    return MemoryStore()


class DummySObjectType:
    def __init__(self, fields: List[Dict[str, Any]]):
        self.fields = fields

    def describe(self):
        return {"fields": self.fields}


class DummySalesforce:
    """Stand-in for simple_salesforce.Salesforce recording the calls SalesforceStore makes.

    Responses are queued per call kind and served in order; no HTTP happens.
    """

    def __init__(self, describes: Optional[Dict[str, List[Dict[str, Any]]]] = None):
        self.describes = describes or {}
        self.restful_calls: List[Dict[str, Any]] = []
        self.queries: List[str] = []
        self.restful_responses: List[Any] = []
        self.query_responses: List[List[Dict[str, Any]]] = []

    def restful(self, path, params=None, method="GET", **kwargs):
        self.restful_calls.append({"path": path, "params": params, "method": method, **kwargs})
        response = self.restful_responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def query_all(self, soql):
        self.queries.append(soql)
        records = self.query_responses.pop(0) if self.query_responses else []
        return {"totalSize": len(records), "done": True, "records": records}

    def __getattr__(self, name):
        if name.startswith("_"):
            raise AttributeError(name)
        return DummySObjectType(self.describes.get(name, []))


@pytest.fixture
def dummy_sf():
    return DummySalesforce()


@pytest.fixture
def dummy_sf_factory():
    return DummySalesforce
