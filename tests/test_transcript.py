import textwrap

import yaml

from chatproxy.models import (
    ChatMessage,
    MergedReply,
    RawFallback,
    ReplyMessage,
    StructuredReply,
)
from chatproxy.stream_merger import reconstruct_reply
from chatproxy.transcript import (
    content_to_text,
    format_call,
    indent,
    render_output,
    render_transcript,
)

PATH = "/openai/deployments/gpt4/chat/completions"


def test_indent_prefixes_every_line():
    assert indent("a\nb", "  ") == "  a\n  b"
    assert indent("", "  ") == "  "


def test_content_to_text_flattens_multipart_content():
    content = [
        {"type": "text", "text": "look at this"},
        {"type": "image_url", "image_url": {"url": "data:image/png;base64,xx"}},
        "trailing",
    ]
    assert content_to_text(content) == "look at this\n[image_url]\ntrailing"
    assert content_to_text(None) == ""


def test_render_transcript_single_document():
    messages = [
        ChatMessage(role="system", content="Be brief.\nAlways."),
        ChatMessage(role="user", content="hi"),
    ]
    reply = StructuredReply(messages=[ReplyMessage(role="assistant", content="hello")])

    out = render_transcript(PATH, messages, reply)

    assert out == textwrap.dedent(
        """\
        request:
          method: POST
          url: /openai/deployments/gpt4/chat/completions
        input:
          - role: system
            content: |
              Be brief.
              Always.
          - role: user
            content: |
              hi
        output:
          role: assistant
          content: |
            hello
        """
    )


def test_render_transcript_is_deterministic():
    messages = [ChatMessage(role="user", content="hi")]
    reply = reconstruct_reply(
        b'{"choices":[{"message":{"role":"assistant","content":"hello"}}]}'
    )
    first = render_transcript(PATH, messages, reply)
    second = render_transcript(PATH, messages, reply)
    assert first == second


def test_render_transcript_parses_as_yaml_for_simple_content():
    messages = [ChatMessage(role="user", content="hi")]
    reply = StructuredReply(messages=[ReplyMessage(role="assistant", content="hello")])
    data = yaml.safe_load(render_transcript(PATH, messages, reply))
    assert data["request"] == {"method": "POST", "url": PATH}
    assert data["input"] == [{"role": "user", "content": "hi\n"}]
    assert data["output"]["role"] == "assistant"
    assert data["output"]["content"] == "hello\n"


def test_render_output_tool_calls_expand_json_arguments():
    message = ReplyMessage(
        role="assistant",
        content=None,
        tool_calls=[
            {
                "id": "call_1",
                "type": "function",
                "function": {
                    "name": "query",
                    "arguments": '{"tableName":"销售","columns":[]}',
                },
            }
        ],
    )
    out = render_output(StructuredReply(messages=[message]))
    data = yaml.safe_load(out.replace("content: |\n  \n", "content: ''\n"))
    assert data["tool_calls"][0]["function"]["arguments"] == {
        "tableName": "销售",
        "columns": [],
    }
    assert "销售" in out


def test_render_output_function_call_keeps_non_json_arguments():
    message = ReplyMessage(
        role="assistant",
        content="",
        function_call={"name": "lookup", "arguments": "not json"},
    )
    out = render_output(StructuredReply(messages=[message]))
    assert "function_call:\n  name: lookup\n  arguments: not json" in out


def test_format_call_does_not_mutate_input():
    call = {"function": {"name": "f", "arguments": '{"a": 1}'}}
    formatted = format_call(call)
    assert formatted["function"]["arguments"] == {"a": 1}
    assert call["function"]["arguments"] == '{"a": 1}'


def test_render_output_raw_fallback_keeps_bytes():
    out = render_output(RawFallback(body=b"line one\nline two"))
    assert out == "raw_response: |\n  line one\n  line two"


def test_render_output_empty_stream_dumps_recovered_fields():
    merged = MergedReply(id="chatcmpl-9", model="gpt-4")
    reply = StructuredReply(
        messages=[ReplyMessage(role="assistant", content="")], merged=merged
    )
    out = render_output(reply)
    assert out.startswith("role: assistant\ncontent: |\n  \nraw_response: |\n")
    assert '  "id": "chatcmpl-9"' in out
    assert '  "model": "gpt-4"' in out


def test_render_output_stream_with_content_has_no_raw_block():
    merged = MergedReply(id="chatcmpl-9", content="Hello")
    reply = StructuredReply(
        messages=[ReplyMessage(role="assistant", content="Hello")], merged=merged
    )
    assert render_output(reply) == "role: assistant\ncontent: |\n  Hello"


def test_render_output_multiple_choices_as_list():
    reply = StructuredReply(
        messages=[
            ReplyMessage(role="assistant", content="one"),
            ReplyMessage(role="assistant", content="two"),
        ]
    )
    assert render_output(reply) == (
        "- role: assistant\n"
        "  content: |\n"
        "    one\n"
        "- role: assistant\n"
        "  content: |\n"
        "    two"
    )
