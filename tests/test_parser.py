"""Tests for both AgentScript dialects and parser error recovery."""

from agentscript.dsl import (
    AgentParser,
    Dialect,
    SecretDef,
    SecretKind,
    StepKind,
    Trigger,
    VarDef,
    VarKind,
    detect_dialect,
    parse,
)
from agentscript.dsl.parser import mask_text_values


class TestDialectDetection:
    """Test the structural dialect probe."""

    def test_terse(self, hello_terse):
        assert detect_dialect(hello_terse) == Dialect.TERSE

    def test_declarative(self, hello_declarative):
        assert detect_dialect(hello_declarative) == Dialect.DECLARATIVE

    def test_indented_section_word_does_not_flip(self):
        text = '@agent a v1\nstep s:\n  prompt """\n  steps: do this\n  """\n@end\n'
        assert detect_dialect(text) == Dialect.TERSE


class TestTerseParser:
    """Test the @agent ... @end statement dialect."""

    def setup_method(self):
        self.parser = AgentParser()

    def test_hello_world(self, hello_terse):
        result = self.parser.parse(hello_terse)
        ast = result.ast

        assert result.dialect == Dialect.TERSE
        assert result.validation.valid, result.validation.to_dict()
        assert ast.id == "hi"
        assert ast.version == 1
        assert ast.trigger == Trigger("http", "POST", "/hi")
        assert ast.vars == {"m": VarDef(VarKind.INPUT, "message")}
        assert len(ast.steps) == 1

        step = ast.steps[0]
        assert step.id == "s"
        assert step.kind == StepKind.LLM
        assert step.provider == "openai"
        assert step.model == "gpt-4o"
        assert step.prompt == "Hello {m}"
        assert step.save == "r"
        assert step.retries is None
        assert step.timeout_ms is None
        assert ast.outputs == {"result": "{r}"}

    def test_secrets_and_vars(self):
        text = (
            "@agent cfg v2\n"
            "trigger http GET /cfg\n"
            "secret API_KEY=env:OPENAI_API_KEY\n"
            'secret TOKEN=literal:"abc"\n'
            "var lang = input.lang default \"en\"\n"
            "var mode = env.MODE required\n"
            'var greeting = "hi there"\n'
            "@end\n"
        )
        ast = self.parser.parse(text, validate=False).ast

        assert ast.version == 2
        assert ast.secrets == {
            "API_KEY": SecretDef(SecretKind.ENV, "OPENAI_API_KEY"),
            "TOKEN": SecretDef(SecretKind.LITERAL, "abc"),
        }
        assert ast.vars["lang"] == VarDef(VarKind.INPUT, "lang", False, "en")
        assert ast.vars["mode"] == VarDef(VarKind.ENV, "MODE", True)
        assert ast.vars["greeting"] == VarDef(VarKind.LITERAL, "hi there")

    def test_multiline_prompt_is_dedented(self):
        text = (
            "@agent a v1\n"
            "trigger http POST /a\n"
            "step s:\n"
            "  kind llm\n"
            "  model gpt-4o\n"
            '  prompt """\n'
            "    First line\n"
            "      indented\n"
            '  """\n'
            "  save r\n"
            "output r\n"
            "@end\n"
        )
        step = self.parser.parse(text).ast.steps[0]
        assert step.prompt == "First line\n  indented"
        assert step.save == "r"

    def test_json_properties_and_unknown_keys(self):
        text = (
            "@agent a v1\n"
            "trigger http POST /a\n"
            "step call:\n"
            "  kind http\n"
            "  method post\n"
            "  url https://api.example.com/items\n"
            '  headers {"X-Key": "abc"}\n'
            '  body {"n": 1}\n'
            "  timeoutMs 5000\n"
            "  temperature 0.2\n"
            "@end\n"
        )
        result = self.parser.parse(text, validate=False)
        step = result.ast.steps[0]

        assert step.method == "POST"
        assert step.url == "https://api.example.com/items"
        assert step.headers == {"X-Key": "abc"}
        assert step.body == {"n": 1}
        assert step.timeout_ms == 5000
        assert step.extra == {"temperature": "0.2"}
        assert any("Unknown step property 'temperature'" in w.message for w in result.validation.warnings)

    def test_named_outputs(self):
        text = (
            "@agent a v1\n"
            "trigger http POST /a\n"
            "var x = input.x\n"
            'output greeting = "Hi {x}"\n'
            "output x\n"
            "@end\n"
        )
        ast = self.parser.parse(text).ast
        assert ast.outputs == {"greeting": "Hi {x}", "result": "{x}"}

    def test_error_recovery(self):
        text = (
            "@agent broken v1\n"
            "trigger http POST /x\n"
            "bogus line here\n"
            "step a:\n"
            "  kind llm\n"
            "  model gpt-4o\n"
            "  prompt hi\n"
            "  retries lots\n"
            "  save r\n"
            "output r\n"
            "@end\n"
        )
        result = self.parser.parse(text, validate=False)

        errors = result.validation.errors
        assert len(errors) == 2
        assert errors[0].line == 3
        assert "Unrecognized statement 'bogus'" in errors[0].message
        assert errors[1].line == 8
        assert "must be an integer" in errors[1].message

        step = result.ast.steps[0]
        assert step.retries is None
        assert step.save == "r"
        assert result.ast.outputs == {"result": "{r}"}

    def test_missing_header(self):
        result = self.parser.parse("trigger http POST /x\n@end\n", validate=False)
        assert not result.validation.valid
        assert result.validation.errors[0].location == "id"

    def test_missing_end_is_warning(self):
        result = self.parser.parse("@agent a v1\ntrigger http POST /a\n", validate=False)
        assert result.validation.valid
        assert any("@end" in w.message for w in result.validation.warnings)

    def test_missing_version(self):
        result = self.parser.parse("@agent a\ntrigger http POST /a\n@end\n", validate=False)
        assert result.validation.errors[0].location == "version"

    def test_trigger_path_without_method(self):
        result = self.parser.parse("@agent a v1\ntrigger webhook /hook\n@end\n", validate=False)
        assert result.ast.trigger == Trigger("webhook", None, "/hook")

    def test_hyphenated_secret_and_var_names(self):
        text = (
            "@agent a v1\n"
            "trigger http POST /a\n"
            "secret api-key=env:SERVICE_KEY\n"
            "var user-name = input.user\n"
            "@end\n"
        )
        result = self.parser.parse(text, validate=False)
        assert result.validation.valid, result.validation.to_dict()
        assert set(result.ast.secrets) == {"api-key"}
        assert result.ast.vars["user-name"].source == "user"

    def test_missing_trigger_fails_validation(self):
        text = "@agent a v1\nvar x = input.x\noutput x\n@end\n"
        result = parse(text)
        assert not result.validation.valid
        assert any(error.location == "trigger" for error in result.validation.errors)


class TestDeclarativeParser:
    """Test the section-keyword dialect."""

    def setup_method(self):
        self.parser = AgentParser()

    def test_hello_world(self, hello_declarative):
        result = self.parser.parse(hello_declarative)

        assert result.dialect == Dialect.DECLARATIVE
        assert result.validation.valid, result.validation.to_dict()
        assert result.ast.trigger == Trigger("http", "POST", "/hi")
        assert result.ast.steps[0].prompt == "Hello {m}"
        assert result.ast.outputs == {"result": "{r}"}

    def test_dialects_produce_equal_asts(self, hello_terse, hello_declarative):
        terse = self.parser.parse(hello_terse).ast
        declarative = self.parser.parse(hello_declarative).ast
        assert terse == declarative

    def test_inline_trigger_and_description(self):
        text = (
            "@agent a v1\n"
            "description: Summarizes things, doesn't it?\n"
            "trigger: http POST /a\n"
            "steps:\n"
            "  - id: s\n"
            "    kind: function\n"
            "    function: upper\n"
            "outputs:\n"
            "  done: ok\n"
            "@end\n"
        )
        result = self.parser.parse(text, validate=False)
        assert result.validation.valid, result.validation.to_dict()
        assert result.ast.description == "Summarizes things, doesn't it?"
        assert result.ast.trigger == Trigger("http", "POST", "/a")
        assert result.ast.outputs == {"done": "ok"}

    def test_inline_trigger_path_without_method(self):
        text = "@agent a v1\ntrigger: webhook /hook\n@end\n"
        result = self.parser.parse(text, validate=False)
        assert result.ast.trigger == Trigger("webhook", None, "/hook")

    def test_prose_prompt_and_greedy_model(self):
        text = (
            "@agent a v1\n"
            "trigger: http POST /a\n"
            "vars:\n"
            "  topic: input.topic\n"
            "steps:\n"
            "  - id: s\n"
            "    kind: llm\n"
            "    model: ollama/qwen2.5-coder:7b\n"
            "    prompt: Don't panic! Explain {topic} (briefly) & return {\"ok\": true}\n"
            "    save: r\n"
            "outputs:\n"
            "  result: \"{r}\"\n"
            "@end\n"
        )
        result = self.parser.parse(text)
        step = result.ast.steps[0]
        assert step.model == "ollama/qwen2.5-coder:7b"
        assert step.prompt == "Don't panic! Explain {topic} (briefly) & return {\"ok\": true}"
        assert result.validation.valid, result.validation.to_dict()

    def test_pipe_block(self):
        text = (
            "@agent a v1\n"
            "trigger: http POST /a\n"
            "steps:\n"
            "  - id: s\n"
            "    kind: llm\n"
            "    model: gpt-4o\n"
            "    prompt: |\n"
            "      Line one\n"
            "        nested\n"
            "    save: r\n"
            "outputs:\n"
            "  result: \"{r}\"\n"
            "@end\n"
        )
        step = self.parser.parse(text).ast.steps[0]
        assert step.prompt == "Line one\n  nested"
        assert step.save == "r"

    def test_secrets_and_nested_vars(self):
        text = (
            "@agent a v1\n"
            "trigger: http POST /a\n"
            "secrets:\n"
            "  - name: API_KEY\n"
            "    type: env\n"
            "    value: OPENAI_API_KEY\n"
            "vars:\n"
            "  user:\n"
            "    from: input\n"
            "    path: user.name\n"
            "    required: true\n"
            "  region:\n"
            "    from: env\n"
            "    path: REGION\n"
            "    default: eu\n"
            "  style: \"formal\"\n"
            "@end\n"
        )
        ast = self.parser.parse(text, validate=False).ast
        assert ast.secrets == {"API_KEY": SecretDef(SecretKind.ENV, "OPENAI_API_KEY")}
        assert ast.vars == {
            "user": VarDef(VarKind.INPUT, "user.name", True),
            "region": VarDef(VarKind.ENV, "REGION", False, "eu"),
            "style": VarDef(VarKind.LITERAL, "formal"),
        }

    def test_nested_headers(self):
        text = (
            "@agent a v1\n"
            "trigger: http POST /a\n"
            "steps:\n"
            "  - id: call\n"
            "    kind: http\n"
            "    url: https://api.example.com\n"
            "    headers:\n"
            "      Content-Type: application/json\n"
            "    action: post\n"
            "@end\n"
        )
        step = self.parser.parse(text, validate=False).ast.steps[0]
        assert step.url == "https://api.example.com"
        assert step.headers == {"Content-Type": "application/json"}
        assert step.method == "POST"

    def test_unlexable_line_is_recovered(self):
        text = (
            "@agent rec v1\n"
            "trigger: http POST /rec\n"
            "steps:\n"
            "  - id: a\n"
            "    kind: function\n"
            "    function: upper\n"
            "    extra_flag: $$$\n"
            "    save: r\n"
            "outputs:\n"
            "  result: \"{r}\"\n"
            "@end\n"
        )
        result = self.parser.parse(text, validate=False)

        errors = result.validation.errors
        assert len(errors) == 1
        assert errors[0].line == 7
        assert "Unexpected character" in errors[0].message

        step = result.ast.steps[0]
        assert step.function == "upper"
        assert step.save == "r"

    def test_step_without_id(self):
        text = (
            "@agent a v1\n"
            "trigger: http POST /a\n"
            "steps:\n"
            "  - kind: llm\n"
            "@end\n"
        )
        result = self.parser.parse(text, validate=False)
        assert result.ast.steps == ()
        assert any("missing an 'id'" in error.message for error in result.validation.errors)


class TestMaskTextValues:
    """Test free-text masking ahead of tokenization."""

    def test_masks_prompt_and_keeps_line_count(self):
        text = "steps:\n  - id: a\n    prompt: it's {x}\n"
        masked, values = mask_text_values(text)
        assert masked.split("\n")[2] == "    prompt:"
        assert values == {3: "it's {x}"}
        assert masked.count("\n") == text.count("\n")

    def test_everything_under_outputs_is_text(self):
        masked, values = mask_text_values("outputs:\n  answer: {r}!\n")
        assert values == {2: "{r}!"}
