import copy
from typing import Any, Dict

import pytest

from apicopilot.tools.compiler import SchemaCompiler
from apicopilot.tools.registry import ToolCatalog


SHOP_API: Dict[str, Any] = {
    "openapi": "3.0.3",
    "info": {"title": "Shop API", "version": "1.2.0"},
    "paths": {
        "/orders": {
            "get": {
                "operationId": "listOrders",
                "summary": "List orders",
                "parameters": [
                    {
                        "name": "status",
                        "in": "query",
                        "schema": {"type": "string", "enum": ["open", "shipped"]},
                    },
                    {
                        "name": "limit",
                        "in": "query",
                        "description": "Page size",
                        "schema": {"type": "integer", "minimum": 1, "maximum": 100},
                    },
                ],
            },
            "post": {
                "operationId": "createOrder",
                "description": "Create an order",
                "requestBody": {
                    "required": True,
                    "content": {
                        "application/json": {"schema": {"$ref": "#/components/schemas/NewOrder"}}
                    },
                },
            },
        },
        "/orders/{orderId}": {
            "parameters": [
                {
                    "name": "orderId",
                    "in": "path",
                    "required": True,
                    "description": "Order identifier",
                    "schema": {"type": "string"},
                }
            ],
            "get": {"operationId": "getOrder", "summary": "Get one order"},
            "patch": {
                "operationId": "updateOrder",
                "parameters": [
                    {"name": "status", "in": "query", "schema": {"type": "string"}},
                    {"name": "X-Request-Source", "in": "header", "schema": {"type": "string"}},
                ],
                "requestBody": {
                    "content": {
                        "application/json": {
                            "schema": {"type": "object", "properties": {"note": {"type": "string"}}}
                        }
                    }
                },
            },
            "options": {"summary": "CORS preflight"},
        },
        "/products/{productId}/images": {
            "put": {
                "requestBody": {
                    "content": {
                        "application/json": {
                            "schema": {"type": "array", "items": {"type": "string"}}
                        }
                    }
                }
            }
        },
    },
    "components": {
        "schemas": {
            "NewOrder": {
                "type": "object",
                "required": ["productId", "quantity"],
                "properties": {
                    "productId": {"type": "string"},
                    "quantity": {"type": "integer", "minimum": 1},
                    "notes": {"type": "string", "maxLength": 200},
                },
            }
        }
    },
}


@pytest.fixture


def shop_api() -> Dict[str, Any]:
    return copy.deepcopy(SHOP_API)


@pytest.fixture


def shop_catalog(shop_api) -> ToolCatalog:
    return ToolCatalog(SchemaCompiler().compile(shop_api))
