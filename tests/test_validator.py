"""Tests for semantic validation of agent ASTs."""

import dataclasses

from agentscript.dsl import (
    AgentAST,
    AgentValidator,
    SecretDef,
    SecretKind,
    Step,
    StepKind,
    Trigger,
    ValidationLevel,
    VarDef,
    VarKind,
    extract_references,
)


def make_agent(*steps, **overrides):
    fields = dict(
        id="agent",
        version=1,
        trigger=Trigger("http", "POST", "/run"),
        vars={"topic": VarDef(VarKind.INPUT, "topic")},
        steps=tuple(steps),
        outputs={"result": "{topic}"},
    )
    fields.update(overrides)
    return AgentAST(**fields)


def llm(step_id, prompt="Tell me about {topic}", **fields):
    return Step(id=step_id, kind=StepKind.LLM, model="gpt-4o", prompt=prompt, **fields)


def messages(result, level=ValidationLevel.ERROR):
    return [issue.message for issue in result.issues if issue.level == level]


class TestAgentValidator:
    """Test validator checks."""

    def setup_method(self):
        self.validator = AgentValidator()

    def test_valid_agent(self):
        result = self.validator.validate(make_agent(llm("a", save="r"), outputs={"result": "{r}"}))
        assert result.valid, result.to_dict()
        assert result.warnings == []

    def test_missing_trigger(self):
        result = self.validator.validate(make_agent(trigger=None))
        assert not result.valid
        assert result.errors[0].location == "trigger"

    def test_http_trigger_requirements(self):
        result = self.validator.validate(make_agent(trigger=Trigger("http", None, "run")))
        errors = messages(result)
        assert "HTTP trigger needs a method" in errors
        assert "Trigger path 'run' must start with '/'" in errors

    def test_non_http_trigger_needs_no_path(self):
        result = self.validator.validate(make_agent(trigger=Trigger("schedule")))
        assert result.valid

    def test_agent_id_and_version(self):
        result = self.validator.validate(make_agent(id="9lives", version=0))
        locations = [error.location for error in result.errors]
        assert locations == ["id", "version"]

    def test_forward_reference(self):
        agent = make_agent(
            llm("first", prompt="Use {later}"),
            llm("second", save="later"),
            outputs={"result": "{later}"},
        )
        result = self.validator.validate(agent)
        errors = messages(result)
        assert len(errors) == 1
        assert "Forward reference '{later}'" in errors[0]
        assert "step 2" in errors[0]
        assert result.errors[0].location == "steps[0]"

    def test_unknown_reference(self):
        result = self.validator.validate(make_agent(llm("a", prompt="Hi {nobody}")))
        assert messages(result) == ["Unknown reference '{nobody}'"]

    def test_input_env_and_secret_references(self):
        agent = make_agent(
            Step(
                id="call",
                kind=StepKind.HTTP,
                url="https://api.example.com/{input.path}",
                headers={"Authorization": "Bearer {API_KEY}", "X-Env": "{env.STAGE}"},
                save="data",
            ),
            secrets={"API_KEY": SecretDef(SecretKind.ENV, "API_KEY")},
            outputs={"result": "{data.items}"},
        )
        result = self.validator.validate(agent)
        assert result.valid, result.to_dict()

    def test_json_braces_are_not_references(self):
        result = self.validator.validate(make_agent(llm("a", prompt='Reply with {"answer": 42} about {topic}')))
        assert result.valid

    def test_duplicate_step_ids(self):
        result = self.validator.validate(make_agent(llm("a"), llm("a")))
        assert "Duplicate step id 'a'" in messages(result)

    def test_duplicate_save_is_warning(self):
        result = self.validator.validate(
            make_agent(llm("a", save="r"), llm("b", save="r"), outputs={"result": "{r}"})
        )
        assert result.valid
        assert "Step 'b' overwrites saved value 'r'" in messages(result, ValidationLevel.WARNING)

    def test_unused_save_is_warning(self):
        result = self.validator.validate(make_agent(llm("a", save="unused")))
        assert result.valid
        assert any("'unused'" in message for message in messages(result, ValidationLevel.WARNING))

    def test_required_fields_per_kind(self):
        agent = make_agent(
            Step(id="h", kind=StepKind.HTTP),
            Step(id="f", kind=StepKind.FUNCTION),
            Step(id="v", kind=StepKind.VISION, model="gpt-4o"),
            Step(id="d", kind=StepKind.VECTORDB, backend="memory"),
            Step(id="t", kind=StepKind.FINETUNE, operation="create"),
        )
        errors = messages(self.validator.validate(agent))
        assert "http step 'h' requires 'url'" in errors
        assert "function step 'f' requires 'function'" in errors
        assert "vision step 'v' requires 'input'" in errors
        assert "vectordb step 'd' requires 'operation'" in errors
        assert "finetune step 't' requires 'model'" in errors

    def test_audio_accepts_text_or_input(self):
        with_text = make_agent(Step(id="a", kind=StepKind.AUDIO, model="tts-1", text="Hi {topic}"))
        without = make_agent(Step(id="a", kind=StepKind.AUDIO, model="tts-1"))
        assert self.validator.validate(with_text).valid
        assert "audio step 'a' requires 'input' or 'text'" in messages(self.validator.validate(without))

    def test_missing_kind(self):
        result = self.validator.validate(make_agent(Step(id="a")))
        assert "Step 'a' is missing 'kind'" in messages(result)

    def test_ranges(self):
        agent = make_agent(
            llm("a", retries=-1, timeout_ms=0),
            llm("b", retries=11, timeout_ms=700000),
            Step(id="c", kind=StepKind.VECTORDB, operation="query", backend="memory", top_k=0),
        )
        result = self.validator.validate(agent)
        errors = messages(result)
        warnings = messages(result, ValidationLevel.WARNING)
        assert "Step 'a' retries must not be negative" in errors
        assert "Step 'a' timeout_ms must be positive" in errors
        assert "Step 'c' top_k must be at least 1" in errors
        assert "Step 'b' retries 11 exceeds 10" in warnings
        assert "Step 'b' timeout_ms 700000 exceeds 600000" in warnings

    def test_unsupported_step_method(self):
        step = Step(id="h", kind=StepKind.HTTP, url="https://x", method="FETCH")
        assert "Unsupported HTTP method 'FETCH' in step 'h'" in messages(self.validator.validate(make_agent(step)))

    def test_collects_every_error(self):
        agent = dataclasses.replace(make_agent(Step(id="a"), Step(id="a")), trigger=None, id="")
        assert len(self.validator.validate(agent).errors) >= 4


class TestExtractReferences:
    """Test reference extraction."""

    def test_nested_values(self):
        value = {"a": "{x} and { y.z }", "b": ["{input.q}", 3]}
        assert extract_references(value) == ["x", "y.z", "input.q"]

    def test_non_strings(self):
        assert extract_references(None) == []
        assert extract_references(42) == []
