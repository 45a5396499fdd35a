"""Tests for ServiceResult and BaseService."""

from core.services import BaseService, ServiceResult


class TestServiceResult:
    def test_success(self):
        result = ServiceResult.success({"id": 1})

        assert result
        assert result.data == {"id": 1}
        assert result.to_response() == {"success": True, "data": {"id": 1}}

    def test_failure_response(self):
        result = ServiceResult.failure(
            "Every admission needs a holder name and email",
            error_code="INVALID_HOLDER",
            errors={"holders[0]": ["Name and email are required"]},
        )

        assert not result
        assert result.data is None
        assert result.to_response() == {
            "success": False,
            "error": "Every admission needs a holder name and email",
            "error_code": "INVALID_HOLDER",
            "errors": {"holders[0]": ["Name and email are required"]},
        }

    def test_failure_without_code(self):
        assert ServiceResult.failure("Nope").to_response() == {
            "success": False,
            "error": "Nope",
        }


class TestBaseService:
    def test_logger_named_after_service(self):
        class ExampleService(BaseService):
            pass

        assert ExampleService.get_logger().name == f"{__name__}.ExampleService"
