"""Unit tests for the workflow state machine."""
import asyncio

import pytest

from inpaint_studio.errors import (
    HistoryEntryNotFound,
    ImageDecodeError,
    InvalidTransitionError,
    PreconditionError,
    SubmissionError,
)
from inpaint_studio.history import HistoryStore
from inpaint_studio.schemas import InpaintResponse
from inpaint_studio.strokes import Tool
from inpaint_studio.workflow import SUBMISSION_FAILED_NOTICE, Stage, Workflow


def _mark(workflow, points=((100, 75),)):
    engine = workflow.engine
    engine.begin_stroke(points[0])
    for point in points[1:]:
        engine.continue_stroke(point)
    engine.end_stroke()


class TestWorkflowTransitions:
    """Test stage transitions and their guards."""

    @pytest.fixture
    def workflow(self, mock_client):
        return Workflow(client=mock_client, history=HistoryStore())

    @pytest.fixture
    def marked(self, workflow, gray_png):
        """Workflow in the mark stage with a mask drawn."""
        workflow.load_image(gray_png, mime_type="image/png")
        _mark(workflow)
        return workflow

    def test_initial_state(self, workflow):
        assert workflow.stage == Stage.UPLOAD
        assert workflow.iterations == 2
        assert workflow.image is None
        assert workflow.mask is None
        assert workflow.step_status(Stage.UPLOAD) == "active"
        assert workflow.step_status(Stage.RESULT) == "pending"

    def test_explicit_iterations_are_clamped_not_defaulted(self, mock_client):
        assert Workflow(client=mock_client, iterations=0).iterations == 1

    def test_load_image_enters_mark(self, workflow, gray_png):
        workflow.load_image(gray_png, mime_type="image/png")

        assert workflow.stage == Stage.MARK
        assert workflow.image.width == 200
        assert workflow.engine.enabled
        assert not workflow.can_advance
        assert workflow.step_status(Stage.UPLOAD) == "completed"

    def test_decode_failure_keeps_upload_stage(self, workflow):
        with pytest.raises(ImageDecodeError):
            workflow.load_image(b"definitely not an image", mime_type="image/png")
        assert workflow.stage == Stage.UPLOAD
        assert workflow.image is None

    def test_non_image_mime_rejected(self, workflow, gray_png):
        with pytest.raises(ImageDecodeError):
            workflow.load_image(gray_png, mime_type="text/plain")
        assert workflow.stage == Stage.UPLOAD

    def test_load_only_from_upload(self, marked, gray_png):
        with pytest.raises(InvalidTransitionError):
            marked.load_image(gray_png)

    def test_mask_does_not_auto_advance(self, marked):
        assert marked.mask is not None
        assert marked.stage == Stage.MARK
        assert marked.can_advance

    def test_advance_without_mask_rejected(self, workflow, gray_png):
        workflow.load_image(gray_png)
        with pytest.raises(PreconditionError):
            workflow.advance_to_configure()
        assert workflow.stage == Stage.MARK

    def test_erased_mask_disables_advance(self, marked):
        marked.set_tool(Tool.ERASE)
        _mark(marked)
        assert marked.mask is None
        assert not marked.can_advance

    def test_clear_mask(self, marked):
        marked.clear_mask()
        assert marked.mask is None
        assert not marked.engine.has_mark

    def test_advance_disables_engine(self, marked):
        marked.advance_to_configure()

        assert marked.stage == Stage.CONFIGURE
        assert not marked.engine.enabled
        assert marked.engine.begin_stroke((10, 10)) is False
        assert marked.handle_key("e") is False
        with pytest.raises(InvalidTransitionError):
            marked.clear_mask()

    def test_set_iterations_clamps(self, marked):
        marked.advance_to_configure()
        assert marked.set_iterations(9) == 5
        assert marked.set_iterations(0) == 1
        assert marked.set_iterations(3) == 3
        assert marked.snapshot().iteration_label == "Detailed"

    def test_set_iterations_outside_configure(self, marked):
        with pytest.raises(InvalidTransitionError):
            marked.set_iterations(3)

    def test_edit_mask_from_configure(self, marked):
        marked.advance_to_configure()
        marked.edit_mask()
        assert marked.stage == Stage.MARK
        assert marked.engine.enabled
        assert marked.engine.has_mark

    def test_keys_and_brush_in_mark_stage(self, marked):
        assert marked.handle_key("]")
        assert marked.engine.brush_radius == 35
        marked.set_brush_radius(500)
        assert marked.engine.brush_radius == 100

    def test_new_image_from_mark(self, marked):
        marked.new_image()
        assert marked.stage == Stage.UPLOAD
        assert marked.engine is None
        assert marked.mask is None

    def test_subscribers_receive_snapshots(self, workflow, gray_png):
        seen = []
        unsubscribe = workflow.subscribe(seen.append)

        workflow.load_image(gray_png)
        assert seen[-1].stage == "mark"
        assert seen[-1].canvas_width == 200

        unsubscribe()
        workflow.new_image()
        assert seen[-1].stage == "mark"


class TestWorkflowSubmission:
    """Test submission, failure reverts and history."""

    @pytest.fixture
    def workflow(self, mock_client, gray_png):
        workflow = Workflow(client=mock_client, history=HistoryStore())
        workflow.load_image(gray_png, mime_type="image/png")
        _mark(workflow)
        workflow.advance_to_configure()
        return workflow

    def test_submit_passes_exact_values(self, workflow, mock_client):
        workflow.set_iterations(3)
        image, mask = workflow.image, workflow.mask

        asyncio.run(workflow.submit())

        mock_client.submit.assert_awaited_once_with(image, mask, 3)

    def test_submit_success(self, workflow, result_data_url):
        entry = asyncio.run(workflow.submit())

        assert workflow.stage == Stage.RESULT
        assert not workflow.processing
        assert workflow.result == result_data_url
        assert workflow.job_id == "job_001"
        assert len(workflow.history) == 1
        assert workflow.history.entries[0] is entry
        assert entry.iterations == 2
        assert entry.mask == workflow.mask

    def test_processing_state_is_published(self, workflow):
        seen = []
        workflow.subscribe(seen.append)

        asyncio.run(workflow.submit())

        assert any(s.stage == "result" and s.processing for s in seen)
        assert seen[-1].stage == "result"
        assert not seen[-1].processing
        assert seen[-1].has_result

    def test_submit_without_mask_never_calls_client(self, workflow, mock_client):
        workflow._mask = None
        with pytest.raises(PreconditionError):
            asyncio.run(workflow.submit())
        mock_client.submit.assert_not_called()
        assert workflow.stage == Stage.CONFIGURE

    def test_submit_from_mark_rejected(self, mock_client, gray_png):
        workflow = Workflow(client=mock_client)
        workflow.load_image(gray_png)
        with pytest.raises(InvalidTransitionError):
            asyncio.run(workflow.submit())
        mock_client.submit.assert_not_called()

    def test_failure_reverts_to_configure(self, workflow, mock_client):
        mock_client.submit.side_effect = SubmissionError("timed out")
        workflow.set_iterations(4)
        mask = workflow.mask

        entry = asyncio.run(workflow.submit())

        assert entry is None
        assert workflow.stage == Stage.CONFIGURE
        assert not workflow.processing
        assert workflow.mask == mask
        assert workflow.iterations == 4
        assert workflow.notice == SUBMISSION_FAILED_NOTICE
        assert len(workflow.history) == 0

    def test_retry_after_failure(self, workflow, mock_client, result_data_url):
        mock_client.submit.side_effect = [
            SubmissionError("boom"),
            InpaintResponse(result_image=result_data_url, job_id="job_002"),
        ]

        asyncio.run(workflow.submit())
        asyncio.run(workflow.submit())

        assert mock_client.submit.await_count == 2
        assert workflow.stage == Stage.RESULT
        assert workflow.notice is None
        assert workflow.history.entries[0].id == "job_002"

    def test_no_overlapping_submissions(self, workflow, mock_client, result_data_url):
        async def slow_submit(image, mask, iterations):
            with pytest.raises(InvalidTransitionError):
                await workflow.submit()
            with pytest.raises(InvalidTransitionError):
                workflow.edit_mask()
            with pytest.raises(InvalidTransitionError):
                workflow.change_settings()
            return InpaintResponse(result_image=result_data_url, job_id="job_001")

        mock_client.submit.side_effect = slow_submit
        asyncio.run(workflow.submit())

        assert mock_client.submit.await_count == 1
        assert len(workflow.history) == 1

    def test_new_image_during_processing(self, workflow, mock_client, result_data_url):
        async def submit_then_replace(image, mask, iterations):
            workflow.new_image()
            return InpaintResponse(result_image=result_data_url, job_id="job_late")

        mock_client.submit.side_effect = submit_then_replace
        entry = asyncio.run(workflow.submit())

        assert workflow.stage == Stage.UPLOAD
        assert workflow.result is None
        assert workflow.image is None
        assert entry.id == "job_late"
        assert workflow.history.select("job_late") is entry

    def test_failure_after_new_image_leaves_upload(self, workflow, mock_client):
        async def replace_then_fail(image, mask, iterations):
            workflow.new_image()
            raise SubmissionError("late failure")

        mock_client.submit.side_effect = replace_then_fail
        asyncio.run(workflow.submit())

        assert workflow.stage == Stage.UPLOAD
        assert workflow.notice is None

    def test_result_transitions(self, workflow):
        asyncio.run(workflow.submit())

        workflow.change_settings()
        assert workflow.stage == Stage.CONFIGURE

        asyncio.run(workflow.submit())
        workflow.edit_mask()
        assert workflow.stage == Stage.MARK
        assert workflow.engine.enabled

    def test_new_image_from_result_clears_everything(self, workflow):
        asyncio.run(workflow.submit())
        workflow.new_image()

        assert workflow.stage == Stage.UPLOAD
        assert workflow.image is None
        assert workflow.mask is None
        assert workflow.result is None
        assert workflow.job_id is None
        assert len(workflow.history) == 1


class TestHistorySelection:
    """Test restoring history entries."""

    @pytest.fixture
    def workflow(self, mock_client, gray_png):
        workflow = Workflow(client=mock_client, history=HistoryStore())
        workflow.load_image(gray_png, mime_type="image/png")
        _mark(workflow)
        workflow.advance_to_configure()
        workflow.set_iterations(4)
        asyncio.run(workflow.submit())
        return workflow

    def test_select_restores_entry(self, workflow, image_bytes):
        entry = workflow.history.entries[0]
        workflow.new_image()
        workflow.load_image(image_bytes(300, 200), mime_type="image/png")

        workflow.select_history(entry.id)

        assert workflow.stage == Stage.RESULT
        assert workflow.image is entry.source
        assert workflow.mask == entry.mask
        assert workflow.result == entry.result_image
        assert workflow.iterations == 4
        assert workflow.job_id == entry.id
        assert workflow.engine.has_mark
        assert not workflow.engine.enabled

    def test_select_from_upload(self, workflow):
        workflow.new_image()
        workflow.select_history("job_001")
        assert workflow.stage == Stage.RESULT

        workflow.edit_mask()
        assert workflow.stage == Stage.MARK
        assert workflow.can_advance

    def test_select_unknown(self, workflow):
        with pytest.raises(HistoryEntryNotFound):
            workflow.select_history("nope")
        assert workflow.stage == Stage.RESULT

    def test_select_does_not_mutate_history(self, workflow):
        before = workflow.history.entries
        workflow.select_history("job_001")
        assert workflow.history.entries == before
