import pytest

from oas3gen.compiler.extensions import Extensions, parse_extensions, parse_map_type
from oas3gen.compiler.ir import QualifiedName
from oas3gen.shared.errors import ExtensionTypeMismatch

PATH = "#/components/schemas/Thing"


class TestParseExtensions:
    def test_defaults(self):
        assert parse_extensions({"type": "string"}, PATH) == Extensions()

    def test_all_flags(self):
        ext = parse_extensions(
            {
                "x-go-pointer": True,
                "x-go-string-trimmable": True,
                "x-go-omitempty": True,
                "x-go-skip-validation": True,
                "x-go-skip-security-check": True,
                "x-go-regex": "^[a-z]+$",
            },
            PATH,
        )
        assert ext.pointer and ext.trimmable and ext.omitempty
        assert ext.skip_validation and ext.skip_security_check
        assert ext.regex == "^[a-z]+$"

    def test_go_type_with_parser(self):
        ext = parse_extensions(
            {
                "x-go-type": "github.com/shopspring/decimal.Decimal",
                "x-go-type-string-parse": "github.com/shopspring/decimal.NewFromString",
            },
            PATH,
        )
        assert ext.go_type == QualifiedName("github.com/shopspring/decimal", "Decimal")
        assert ext.string_parse == QualifiedName("github.com/shopspring/decimal", "NewFromString")

    def test_go_type_without_package(self):
        ext = parse_extensions({"x-go-type": "time.Duration"}, PATH)
        assert ext.go_type == QualifiedName("time", "Duration")
        assert parse_extensions({"x-go-type": "int64"}, PATH).go_type == QualifiedName("", "int64")

    @pytest.mark.parametrize("value", ["yes", 1, None])
    def test_bool_mismatch(self, value):
        with pytest.raises(ExtensionTypeMismatch) as info:
            parse_extensions({"x-go-pointer": value}, PATH)
        assert info.value.schema_path == PATH
        assert info.value.context["extension_name"] == "x-go-pointer"
        assert info.value.context["expected_types"] == "bool"

    @pytest.mark.parametrize("value", [True, "", "   ", 3])
    def test_string_mismatch(self, value):
        with pytest.raises(ExtensionTypeMismatch):
            parse_extensions({"x-go-regex": value}, PATH)

    def test_string_parse_requires_go_type(self):
        with pytest.raises(ExtensionTypeMismatch) as info:
            parse_extensions({"x-go-type-string-parse": "pkg/x.Parse"}, PATH)
        assert "requires 'x-go-type'" in info.value.context["reason"]

    def test_string_parse_requires_package(self):
        with pytest.raises(ExtensionTypeMismatch):
            parse_extensions({"x-go-type": "pkg.T", "x-go-type-string-parse": "Parse"}, PATH)

    def test_unknown_extensions_ignored(self):
        assert parse_extensions({"x-go-unknown": 3, "x-other": "a"}, PATH) == Extensions()


class TestParseMapType:
    def test_simple(self):
        override = parse_map_type("map[string]int", PATH)
        assert override.key == QualifiedName("", "string")
        assert override.value == QualifiedName("", "int")
        assert not override.value_is_slice

    def test_qualified_slice(self):
        override = parse_map_type("map[string][]github.com/acme/models.Tag", PATH)
        assert override.value == QualifiedName("github.com/acme/models", "Tag")
        assert override.value_is_slice

    def test_whitespace_is_ignored(self):
        assert parse_map_type("map[ string ] int", PATH).value.name == "int"

    @pytest.mark.parametrize("value", ["string", "map[string]", "map[][]x", "[]string"])
    def test_invalid(self, value):
        with pytest.raises(ExtensionTypeMismatch):
            parse_map_type(value, PATH)

    def test_from_extensions(self):
        ext = parse_extensions({"x-go-map-type": "map[string]float64"}, PATH)
        assert ext.map_type is not None
        assert ext.map_type.value.name == "float64"
