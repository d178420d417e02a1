"""Unit tests for the public pricing and model listing routes."""

import unittest
from unittest.mock import MagicMock

from fastapi import FastAPI
from fastapi.testclient import TestClient

from drain.api.provider_api.dependencies import (
    get_pricing_service,
    get_voucher_ledger_service,
)
from drain.api.provider_api.routers.pricing import router
from drain.application.provider.use_cases.pricing import (
    ModelPricing,
    PricingService,
    PricingTable,
)
from drain.crypto.voucher_codec import VoucherDomain
from drain.infrastructure.chain.abi import DRAIN_ADDRESSES, POLYGON_AMOY

PROVIDER = "0x2222222222222222222222222222222222222222"


class TestPricingRouter(unittest.TestCase):
    def setUp(self):
        self.app = FastAPI()
        self.app.include_router(router, prefix="/v1")

        self.pricing_service = PricingService(
            initial_table=PricingTable(
                models={
                    "gpt-4o": ModelPricing(input_per_k=7500, output_per_k=22500),
                    "tiny": ModelPricing(input_per_k=1, output_per_k=2),
                }
            )
        )
        self.mock_ledger = MagicMock()
        self.mock_ledger.provider_address = PROVIDER
        self.mock_ledger.domain = VoucherDomain(
            chain_id=POLYGON_AMOY, verifying_contract=DRAIN_ADDRESSES[POLYGON_AMOY]
        )

        self.app.dependency_overrides[get_pricing_service] = lambda: self.pricing_service
        self.app.dependency_overrides[get_voucher_ledger_service] = (
            lambda: self.mock_ledger
        )
        self.client = TestClient(self.app)

    def tearDown(self):
        self.app.dependency_overrides.clear()

    def test_pricing_uses_wire_names(self):
        response = self.client.get("/v1/pricing")

        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertEqual(data["provider"], PROVIDER)
        self.assertEqual(data["chainId"], POLYGON_AMOY)
        self.assertEqual(data["currency"], "USDC")
        self.assertEqual(data["decimals"], 6)
        self.assertEqual(
            data["models"]["gpt-4o"],
            {"inputPer1kTokens": "0.0075", "outputPer1kTokens": "0.0225"},
        )
        self.assertEqual(data["models"]["tiny"]["inputPer1kTokens"], "0.000001")

    def test_models_list(self):
        response = self.client.get("/v1/models")

        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertEqual(data["object"], "list")
        self.assertEqual([m["id"] for m in data["data"]], ["gpt-4o", "tiny"])
        self.assertEqual(data["data"][0]["owned_by"], "drain-provider")


if __name__ == "__main__":
    unittest.main()
