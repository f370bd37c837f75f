import json

from workpilot.context import ChainContext


def _chain() -> ChainContext:
    return (
        ChainContext()
        .with_step_output(0, {"summary": "Scope agreed", "score": 85, "tags": ["a", "b"]}, "agent-1")
        .with_step_output(1, {"summary": "Tasks drafted", "owner": "sam"}, "agent-2")
    )


def test_with_step_output_returns_new_instance():
    empty = ChainContext()
    chain = empty.with_step_output(0, {"score": 1}, "agent-1")

    assert empty.is_empty()
    assert chain.completed_step_count == 1
    assert chain.get_output_for_step(0) == {"score": 1}
    assert chain.step_outputs[0].producer_id == "agent-1"
    assert chain.step_outputs[0].completed_at is not None
    assert chain.accumulated_context == {"step_0": {"score": 1}}


def test_recording_same_index_is_last_write_wins():
    chain = ChainContext().with_step_output(0, {"v": 1}).with_step_output(0, {"v": 2})

    assert chain.accumulated_context["step_0"] == {"v": 2}
    assert chain.get_all_outputs() == {0: {"v": 2}}


def test_filter_is_per_step_and_keeps_accumulated_context():
    chain = _chain()
    filtered = chain.filter(include=["summary"])

    for index, output in chain.get_all_outputs().items():
        expected = {k: v for k, v in output.items() if k == "summary"}
        assert filtered.get_output_for_step(index) == expected
    assert filtered.accumulated_context == chain.accumulated_context
    assert filtered.metadata["filtered"] is True
    assert "filtered" not in chain.metadata


def test_filter_applies_include_before_exclude():
    filtered = _chain().filter(include=["summary", "score"], exclude=["score"])

    assert filtered.get_output_for_step(0) == {"summary": "Scope agreed"}


def test_prompt_string_section_order_and_omission():
    chain = _chain().with_metadata({"run": "r1"})
    text = chain.to_prompt_string()

    steps_at = text.index("## Previous Step Outputs")
    accumulated_at = text.index("## Accumulated Context")
    metadata_at = text.index("## Chain Metadata")
    assert steps_at < accumulated_at < metadata_at
    assert "### Step 0" in text
    assert "- **Summary**: Scope agreed" in text
    assert json.dumps(["a", "b"], indent=4) in text

    assert "## Chain Metadata" not in _chain().to_prompt_string()
    assert ChainContext().to_prompt_string() == ""


def test_token_estimate_is_monotonic():
    chain = ChainContext()
    previous = chain.get_token_estimate()
    for index, output in enumerate([{"a": 1}, {}, {"b": "x" * 50}, {"a": 1}]):
        chain = chain.with_step_output(index, output)
        estimate = chain.get_token_estimate()
        assert estimate >= previous
        previous = estimate


def test_pause_and_resume_metadata_mirrored_in_storage_form():
    chain = _chain().with_pause_reason("Deliverable review required").with_resume_data(
        {"approved": True}
    )
    data = chain.to_dict()

    assert data["pause_reason"] == "Deliverable review required"
    assert data["resume_data"] == {"approved": True}
    assert data["metadata"]["pause_reason"] == "Deliverable review required"


def test_round_trip_through_json_keeps_integer_step_indexes():
    chain = _chain()
    restored = ChainContext.from_dict(json.loads(json.dumps(chain.to_dict())))

    assert restored.get_output_for_step(1) == {"summary": "Tasks drafted", "owner": "sam"}
    assert list(restored.step_outputs) == [0, 1]
