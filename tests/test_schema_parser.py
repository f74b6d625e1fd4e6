import os
import tempfile

import pytest

from protoc_dmxp.loader import SchemaLoadError
from protoc_dmxp.parser.schema_ast import (
    ChannelBinding,
    ChannelDirection,
    FieldLabel,
    MapType,
    MethodChannelBinding,
    OptionValue,
    OptionValueKind,
    ProtoOption,
    ScalarType,
    TypeRef,
)
from protoc_dmxp.parser.schema_parser import (
    SchemaParseError,
    parse_schema,
    parse_schema_file,
)


def _write_temp_proto(content: str) -> str:
    fd, path = tempfile.mkstemp(suffix=".proto")
    os.write(fd, content.encode())
    os.close(fd)
    return path


class TestMessages:
    def test_inline_message_with_channel(self):
        schema = parse_schema(
            'message UserData { option (dmxp_channel) = "user_updates"; string user_id = 1; }'
        )
        assert len(schema.messages) == 1
        msg = schema.messages[0]
        assert msg.name == "UserData"
        assert len(msg.fields) == 1
        field = msg.fields[0]
        assert field.name == "user_id"
        assert field.field_type == ScalarType.STRING
        assert field.number == 1
        assert field.label == FieldLabel.OPTIONAL
        assert msg.channel_binding.channel == "user_updates"

    def test_multiline_message(self):
        schema = parse_schema("""\
syntax = "proto3";

message OrderInfo {
    int32 order_id = 1;
    string customer_name = 2;
    bool is_active = 3;
}
""")
        msg = schema.messages[0]
        assert [f.name for f in msg.fields] == ["order_id", "customer_name", "is_active"]
        assert [f.field_type for f in msg.fields] == [
            ScalarType.INT32, ScalarType.STRING, ScalarType.BOOL,
        ]
        assert msg.channel_binding is None
        assert not msg.has_channel

    def test_deep_nesting(self):
        schema = parse_schema("""\
message A {
    message B {
        message C {
            int32 x = 1;
        }
        C c = 1;
    }
    B b = 1;
}
""")
        assert [m.name for m in schema.messages] == ["A"]
        a = schema.messages[0]
        b = a.nested_messages[0]
        c = b.nested_messages[0]
        assert (b.name, c.name) == ("B", "C")
        assert c.fields[0].name == "x"
        assert b.fields[0].field_type == TypeRef("C")
        assert a.fields[0].field_type == TypeRef("B")

    def test_nested_enum(self):
        schema = parse_schema("""\
message Order {
    enum State {
        NEW = 0;
        DONE = 1;
    }
    State state = 1;
}
""")
        assert schema.enums == []
        order = schema.messages[0]
        assert order.nested_enums[0].name == "State"
        assert schema.enum_names() == {"State"}

    def test_message_options_merge(self):
        schema = parse_schema("""\
message Event {
    option (dmxp_channel) = "events";
    option (dmxp_persistent) = true;
    option (dmxp_buffer_size) = 1024;
    option (dmxp_wal_enabled) = false;
    option (dmxp_swap_enabled) = true;
    option (dmxp_priority) = 3;
    string id = 1;
}
""")
        msg = schema.messages[0]
        assert msg.channel_binding == ChannelBinding(
            channel="events",
            persistent=True,
            buffer_size=1024,
            wal_enabled=False,
            swap_enabled=True,
            priority=3,
        )
        assert len(msg.options) == 6

    def test_knobs_without_channel(self):
        schema = parse_schema("message M { option (dmxp_persistent) = true; }")
        msg = schema.messages[0]
        assert msg.channel_binding.persistent is True
        assert msg.channel is None
        assert schema.channel_messages() == []

    def test_plain_option_is_kept_but_not_bound(self):
        schema = parse_schema("message M { option deprecated = true; }")
        msg = schema.messages[0]
        assert msg.options == [
            ProtoOption("deprecated", OptionValue(OptionValueKind.BOOLEAN, True)),
        ]
        assert msg.channel_binding is None


class TestFields:
    def test_labels(self):
        schema = parse_schema("""\
message M {
    required string id = 1;
    optional string nick = 2;
    repeated Item items = 3;
    string plain = 4;
}
""")
        labels = [f.label for f in schema.messages[0].fields]
        assert labels == [
            FieldLabel.REQUIRED,
            FieldLabel.OPTIONAL,
            FieldLabel.REPEATED,
            FieldLabel.OPTIONAL,
        ]
        assert schema.messages[0].fields[2].field_type == TypeRef("Item")

    def test_map_field(self):
        schema = parse_schema("message M { map<string, int64> counters = 3; }")
        field = schema.messages[0].fields[0]
        assert field.name == "counters"
        assert field.number == 3
        assert field.field_type == MapType(ScalarType.STRING, ScalarType.INT64)

    def test_qualified_type_reference(self):
        schema = parse_schema("message M { google.protobuf.Timestamp created = 1; }")
        assert schema.messages[0].fields[0].field_type == TypeRef("google.protobuf.Timestamp")

    def test_hex_field_number(self):
        schema = parse_schema("message M { int32 x = 0x10; }")
        assert schema.messages[0].fields[0].number == 16

    def test_default_and_field_options(self):
        schema = parse_schema(
            'message M { int32 count = 1 [default = 5, deprecated = true, (my_opt) = "x"]; }'
        )
        field = schema.messages[0].fields[0]
        assert field.default_value == OptionValue(OptionValueKind.NUMBER, 5.0)
        assert field.options == [
            ProtoOption("deprecated", OptionValue(OptionValueKind.BOOLEAN, True)),
            ProtoOption("(my_opt)", OptionValue(OptionValueKind.STRING, "x")),
        ]

    def test_keyword_named_field(self):
        schema = parse_schema("message M { string message = 1; }")
        assert schema.messages[0].fields[0].name == "message"

    def test_oneof_members_are_flattened(self):
        schema = parse_schema("""\
message M {
    oneof choice {
        string a = 1;
        int32 b = 2;
    }
    string c = 3;
}
""")
        assert [f.name for f in schema.messages[0].fields] == ["a", "b", "c"]

    def test_reserved_and_extensions_lines_are_skipped(self):
        schema = parse_schema("""\
message M {
    reserved 2, 3;
    reserved "old";
    extensions 100 to 199;
    string a = 1;
}
""")
        assert [f.name for f in schema.messages[0].fields] == ["a"]


class TestFieldErrors:
    def test_empty_field_number(self):
        with pytest.raises(SchemaParseError, match="Empty field number") as exc_info:
            parse_schema("message Bad { string name = ; }")
        assert exc_info.value.line == 1

    def test_non_numeric_field_number(self):
        with pytest.raises(SchemaParseError, match="Invalid field number 'abc'"):
            parse_schema("message Bad { string name = abc; }")

    def test_zero_field_number(self):
        with pytest.raises(SchemaParseError, match="must be positive"):
            parse_schema("message Bad { string name = 0; }")

    def test_malformed_map(self):
        with pytest.raises(SchemaParseError, match="Malformed map type"):
            parse_schema("message Bad { map<string> m = 1; }")

    def test_unterminated_option_list(self):
        with pytest.raises(SchemaParseError, match="Unterminated option list"):
            parse_schema("message Bad { int32 x = 1 [deprecated = true }")

    def test_malformed_option_list(self):
        with pytest.raises(SchemaParseError, match="Malformed option list"):
            parse_schema("message Bad { int32 x = 1 [deprecated = true; }")

    def test_error_reports_line_number(self):
        with pytest.raises(SchemaParseError, match=r"^Line 3: ") as exc_info:
            parse_schema("message Bad {\n    string ok = 1;\n    string name = ;\n}\n")
        assert exc_info.value.line == 3


class TestEnums:
    def test_inline_enum(self):
        schema = parse_schema("enum Status { ACTIVE = 0; INACTIVE = 1; }")
        assert len(schema.enums) == 1
        enum = schema.enums[0]
        assert enum.name == "Status"
        assert [(v.name, v.number) for v in enum.values] == [("ACTIVE", 0), ("INACTIVE", 1)]

    def test_negative_value_and_options(self):
        schema = parse_schema("""\
enum Level {
    option allow_alias = true;
    LOW = -1;
    HIGH = 1 [deprecated = true];
}
""")
        enum = schema.enums[0]
        assert enum.values[0].number == -1
        assert enum.values[1].options == [
            ProtoOption("deprecated", OptionValue(OptionValueKind.BOOLEAN, True)),
        ]
        assert enum.options[0].name == "allow_alias"

    def test_reserved_is_skipped(self):
        schema = parse_schema("enum E { reserved 5; A = 0; }")
        assert [v.name for v in schema.enums[0].values] == ["A"]

    def test_bad_value_number(self):
        with pytest.raises(SchemaParseError, match="Invalid enum value number"):
            parse_schema("enum E { A = abc; }")

    def test_missing_value_name(self):
        with pytest.raises(SchemaParseError, match="Missing enum value name"):
            parse_schema("enum E { = 1; }")


class TestServices:
    def test_inline_service(self):
        schema = parse_schema(
            "service Orders { rpc GetOrder(GetOrderRequest) returns (GetOrderResponse); }"
        )
        assert len(schema.services) == 1
        service = schema.services[0]
        assert service.name == "Orders"
        assert len(service.methods) == 1
        method = service.methods[0]
        assert method.name == "GetOrder"
        assert method.input_type == "GetOrderRequest"
        assert method.output_type == "GetOrderResponse"

    def test_service_channels_accumulate(self):
        schema = parse_schema("""\
service Orders {
    option (dmxp_channels) = "order_events";
    option (dmxp_channels) = "order_audit";
    option (dmxp_timeout_ms) = 5000;
    option (dmxp_retry_count) = 3;
    rpc GetOrder(GetOrderRequest) returns (GetOrderResponse);
    rpc ListOrders(ListOrdersRequest) returns (ListOrdersResponse);
}
""")
        service = schema.services[0]
        assert service.channels == ["order_events", "order_audit"]
        assert service.channel_binding.timeout_ms == 5000
        assert service.channel_binding.retry_count == 3
        assert [m.name for m in service.methods] == ["GetOrder", "ListOrders"]
        assert schema.channel_services() == [service]

    def test_message_key_on_service_is_not_bound(self):
        schema = parse_schema('service S { option (dmxp_channel) = "x"; }')
        service = schema.services[0]
        assert service.channel_binding is None
        assert len(service.options) == 1

    def test_rpc_body_options(self):
        schema = parse_schema("""\
service S {
    rpc Get(GetRequest) returns (GetResponse) {
        option (dmxp_channel) = "get_requests";
        option (dmxp_timeout_ms) = 250;
        option (dmxp_async) = true;
    }
    rpc Put(PutRequest) returns (PutResponse) {}
}
""")
        get, put = schema.services[0].methods
        assert get.channel_binding == MethodChannelBinding(
            channel="get_requests", timeout_ms=250, is_async=True,
        )
        assert len(get.options) == 3
        assert put.name == "Put"
        assert put.channel_binding is None

    def test_qualified_rpc_types(self):
        schema = parse_schema("service S { rpc Ping(google.protobuf.Empty) returns (pkg.Pong); }")
        method = schema.services[0].methods[0]
        assert method.input_type == "google.protobuf.Empty"
        assert method.output_type == "pkg.Pong"

    def test_malformed_rpc(self):
        with pytest.raises(SchemaParseError, match="Malformed rpc declaration"):
            parse_schema("service S {\n    rpc Broken(Req) returns Resp;\n}\n")

    def test_streaming_rpc_is_rejected(self):
        with pytest.raises(SchemaParseError, match="Malformed rpc declaration"):
            parse_schema("service S { rpc Watch(stream Req) returns (Resp); }")


class TestFileLevel:
    def test_syntax_and_package(self):
        schema = parse_schema('syntax = "proto2";\npackage com.example.orders;\n')
        assert schema.syntax == "proto2"
        assert schema.package == "com.example.orders"

    def test_defaults(self):
        schema = parse_schema("")
        assert schema.syntax == "proto3"
        assert schema.package == ""
        assert schema.messages == []

    def test_file_options(self):
        schema = parse_schema('option java_package = "com.example";\noption optimize_for = SPEED;\n')
        assert [o.name for o in schema.options] == ["java_package", "optimize_for"]
        assert schema.options[0].value == OptionValue(OptionValueKind.STRING, "com.example")

    def test_imports_and_unknown_blocks_are_skipped(self):
        schema = parse_schema("""\
import "other.proto";
import public "base.proto";
widget Foo {
    nested Bar {
        x = 1;
    }
}
message Kept {
    string a = 1;
}
""")
        assert [m.name for m in schema.messages] == ["Kept"]

    def test_comments_are_ignored(self):
        schema = parse_schema("""\
// leading comment
message M {
    /* block
       comment */
    string a = 1; // trailing
}
""")
        assert [f.name for f in schema.messages[0].fields] == ["a"]

    def test_lookup_helpers(self):
        schema = parse_schema(
            "enum Status { A = 0; }\n"
            "message M { string a = 1; }\n"
            "service S { rpc Get(M) returns (M); }\n"
        )
        assert schema.find_message("M") is schema.messages[0]
        assert schema.find_service("S") is schema.services[0]
        assert schema.find_enum("Status") is schema.enums[0]
        assert schema.find_message("Nope") is None
        assert schema.channel_services() == []

    def test_extend_block(self):
        schema = parse_schema("""\
extend google.protobuf.MessageOptions {
    string dmxp_channel = 50001;
    bool dmxp_persistent = 50002;
}
""")
        assert [e.name for e in schema.extensions] == ["dmxp_channel", "dmxp_persistent"]
        ext = schema.extensions[0]
        assert ext.extendee == "google.protobuf.MessageOptions"
        assert ext.field_type == ScalarType.STRING
        assert ext.number == 50001
        assert schema.messages == []


class TestChannels:
    def test_channel_block(self):
        schema = parse_schema("""\
channel user_feed {
    message_type = "UserData";
    direction = "subscribe";
    option (dmxp_buffer_size) = 256;
    option (dmxp_persistent) = true;
    option (dmxp_timeout_ms) = 100;
}
""")
        assert len(schema.channels) == 1
        channel = schema.channels[0]
        assert channel.name == "user_feed"
        assert channel.message_type == "UserData"
        assert channel.direction == ChannelDirection.SUBSCRIBE
        assert channel.options.buffer_size == 256
        assert channel.options.persistent is True
        assert channel.options.timeout_ms == 100

    def test_direction_defaults_to_bidirectional(self):
        schema = parse_schema('channel c { message_type = "T"; }')
        assert schema.channels[0].direction == ChannelDirection.BIDIRECTIONAL

    def test_unknown_direction(self):
        with pytest.raises(SchemaParseError, match="Unknown channel direction"):
            parse_schema('channel c { message_type = "T"; direction = "sideways"; }')

    def test_missing_message_type(self):
        with pytest.raises(SchemaParseError, match="has no message_type"):
            parse_schema('channel c { direction = "publish"; }')


class TestStructuralErrors:
    def test_unterminated_message(self):
        with pytest.raises(SchemaParseError, match="Unterminated block: message A") as exc_info:
            parse_schema("message A {\n    string x = 1;\n")
        assert exc_info.value.line == 1

    def test_unterminated_nested(self):
        with pytest.raises(SchemaParseError, match="Unterminated block"):
            parse_schema("message A { message B { string x = 1; }")

    def test_unterminated_service(self):
        with pytest.raises(SchemaParseError, match="Unterminated block: service S"):
            parse_schema("service S {")

    def test_unterminated_skipped_block(self):
        with pytest.raises(SchemaParseError, match="Unterminated block"):
            parse_schema("widget Foo {\n    x = 1;\n")


class TestParseSchemaFile:
    def test_reads_file(self):
        path = _write_temp_proto('syntax = "proto3";\npackage demo;\nmessage M { string a = 1; }\n')
        try:
            schema = parse_schema_file(path)
            assert schema.package == "demo"
            assert schema.messages[0].name == "M"
        finally:
            os.unlink(path)

    def test_missing_file(self):
        with pytest.raises(SchemaLoadError, match="not found"):
            parse_schema_file("/nonexistent/schema.proto")
