import pytest

from oas3gen.shared.naming import (
    content_type_tag,
    decapitalize,
    go_package_name,
    is_identifier,
    normalise,
    normalise_operation,
    ref_local_name,
    title_case,
)


class TestNormalise:
    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            ("hello_world", "HelloWorld"),
            ("user-id", "UserID"),
            ("transaction", "Transaction"),
            ("createdAt", "CreatedAt"),
            ("HTTPStatus", "HTTPStatus"),
            ("x.y.z", "XYZ"),
            ("order uuid", "OrderUUID"),
            ("Content-Type", "ContentType"),
            ("a+b", "AB"),
            ("200", "200"),
            ("", ""),
        ],
    )
    def test_examples(self, value, expected):
        """Separators are dropped and the following letter is capitalised."""
        assert normalise(value) == expected

    @pytest.mark.parametrize("value", ["hello_world", "user-id", "X-Request-Id", "a.b-c_d", "userUuid"])
    def test_idempotent(self, value):
        """Normalising a normalised name changes nothing."""
        once = normalise(value)
        assert normalise(once) == once

    def test_drops_other_punctuation(self):
        """Characters that are neither letters, digits nor separators are removed."""
        assert normalise("price*rate?") == "Pricerate"

    def test_trailing_uuid_before_id(self):
        """A trailing uuid wins over the shorter id suffix."""
        assert normalise("user_uuid") == "UserUUID"
        assert normalise("userid") == "UserID"


class TestNormaliseOperation:
    def test_method_and_path(self):
        assert normalise_operation("/transaction", "post") == "PostTransaction"

    def test_path_parameters(self):
        assert normalise_operation("/users/{id}", "get") == "GetUsersID"

    def test_method_case_is_ignored(self):
        assert normalise_operation("/pets", "GET") == normalise_operation("/pets", "get")


class TestContentTypeTag:
    @pytest.mark.parametrize(
        ("content_type", "expected"),
        [
            ("application/json", "ApplicationJson"),
            ("multipart/form-data", "MultipartFormData"),
            ("application/octet-stream", "ApplicationOctetStream"),
            ("application/vnd.api+json", "ApplicationVndApiJson"),
        ],
    )
    def test_examples(self, content_type, expected):
        assert content_type_tag(content_type) == expected


class TestHelpers:
    def test_ref_local_name(self):
        assert ref_local_name("#/components/schemas/money_amount") == "MoneyAmount"
        assert ref_local_name("") == ""

    def test_decapitalize(self):
        assert decapitalize("PostTransaction") == "postTransaction"
        assert decapitalize("") == ""

    def test_title_case(self):
        assert title_case("query") == "Query"

    @pytest.mark.parametrize(
        ("value", "expected"),
        [("Transaction", True), ("", False), ("200", False), ("type", False), ("Type", True)],
    )
    def test_is_identifier(self, value, expected):
        assert is_identifier(value) is expected


class TestGoPackageName:
    @pytest.mark.parametrize(
        ("import_path", "expected"),
        [
            ("github.com/go-chi/chi/v5", "chi"),
            ("github.com/go-ozzo/ozzo-validation/v4", "validation"),
            ("github.com/google/uuid", "uuid"),
            ("github.com/mikekonan/go-types/v2/country", "country"),
            ("net/http", "http"),
            ("example.com/api/generated", "generated"),
            ("example.com/my-api", "myapi"),
            ("gopkg.in/yaml.v3", "yaml"),
        ],
    )
    def test_examples(self, import_path, expected):
        assert go_package_name(import_path) == expected
