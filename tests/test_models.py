"""Tests for workflow parsing and job/pipeline records."""

import pytest

from flowdrop.services.pipeline.models import (
    DependencyGraph,
    EdgeRecord,
    Job,
    JobStatus,
    Pipeline,
    PipelineStatus,
    Workflow,
    WorkflowEdge,
    WorkflowNode,
    all_jobs_completed,
    calculate_job_counts,
)


class TestWorkflowParsing:
    """Editor JSON to typed workflow records."""

    def test_node_type_prefers_executor_plugin(self):
        node = WorkflowNode.from_dict({
            "id": "n1",
            "type": "universalNode",
            "data": {"metadata": {"id": "text_input", "executor_plugin": "text_input_v2"}},
        })
        assert node.node_type_id == "text_input_v2"

    def test_node_type_falls_back_to_metadata_id_then_type(self):
        by_metadata = WorkflowNode.from_dict({"id": "n1", "type": "t", "data": {"metadata": {"id": "m"}}})
        by_type = WorkflowNode.from_dict({"id": "n2", "type": "t", "data": {}})

        assert by_metadata.node_type_id == "m"
        assert by_type.node_type_id == "t"

    def test_label_fallbacks(self):
        assert WorkflowNode.from_dict({"id": "n", "data": {"label": "L"}}).label == "L"
        assert WorkflowNode.from_dict({"id": "n", "data": {"metadata": {"name": "M"}}}).label == "M"
        assert WorkflowNode.from_dict({"id": "n"}).label == "n"

    def test_config_defaults_are_overridden_by_node_config(self):
        node = WorkflowNode.from_dict({
            "id": "n",
            "data": {
                "config": {"model": "large", "max_retries": 1},
                "metadata": {"config": {"model": "small", "temperature": 0.2}},
            },
        })

        assert node.config == {"model": "large", "temperature": 0.2, "max_retries": 1}
        assert node.max_retries == 1

    def test_max_retries_default(self):
        assert WorkflowNode.from_dict({"id": "n"}).max_retries == 3
        assert WorkflowNode.from_dict({"id": "n"}, default_max_retries=5).max_retries == 5

    def test_edge_missing_handles_become_empty(self):
        edge = WorkflowEdge.from_dict({"source": "a", "target": "b"})
        assert edge.source_handle == ""
        assert edge.target_handle == ""
        assert edge.edge_id is None

    def test_workflow_from_dict(self):
        workflow = Workflow.from_dict({
            "id": "wf",
            "name": "Example",
            "nodes": [{"id": "a"}, {"id": "b"}],
            "edges": [{"id": "e1", "source": "a", "target": "b",
                       "sourceHandle": "a-output-text", "targetHandle": "b-input-text"}],
        })

        assert workflow.label == "Example"
        assert [n.id for n in workflow.nodes] == ["a", "b"]
        assert workflow.edges[0].edge_id == "e1"


class TestDependencyGraphRecord:

    def test_dependencies_are_deduplicated_in_first_seen_order(self):
        graph = DependencyGraph()
        graph.add_dependency("c", "b")
        graph.add_dependency("c", "a")
        graph.add_dependency("c", "b")

        assert graph.dependencies_of("c") == ["b", "a"]
        assert "c" in graph
        assert len(graph) == 1


class TestJob:
    """Job dependency references and lifecycle helpers."""

    def test_dependency_reference_requires_saved_job(self):
        job = Job(node_id="b", id="2")
        with pytest.raises(ValueError):
            job.add_dependent_job(Job(node_id="a"))

    def test_dependency_references_are_unique(self):
        upstream = Job(node_id="a", id="1")
        job = Job(node_id="b", id="2")
        job.add_dependent_job(upstream)
        job.add_dependent_job(upstream)

        assert job.dependent_job_ids == ["1"]

        job.remove_dependent_job(upstream)
        assert job.dependent_job_ids == []

    def test_lifecycle(self):
        job = Job(node_id="a", max_retries=1)
        assert job.status == JobStatus.PENDING
        assert not job.is_terminal

        job.mark_as_started()
        assert job.status == JobStatus.RUNNING
        assert job.started_at is not None

        job.mark_as_failed("boom")
        assert job.is_terminal
        assert job.error_message == "boom"
        assert job.can_retry()

        job.increment_retry_count()
        assert not job.can_retry()

    def test_completed_output(self):
        job = Job(node_id="a").mark_as_completed({"active_branches": "true"})
        assert job.status == JobStatus.COMPLETED
        assert job.output_data == {"active_branches": "true"}
        assert job.completed_at is not None

    def test_incoming_edges_from_metadata(self):
        record = EdgeRecord(source="g", target="x", source_handle="g-output-true",
                            target_handle="x-input-trigger", is_trigger=True, branch_name="true")
        job = Job(node_id="x", metadata={"incoming_edges": [record.to_dict()]})

        assert job.incoming_edges == [record]
        assert job.outgoing_edges == []

    def test_dict_round_trip_keeps_status_and_references(self):
        job = Job(node_id="b", id="2", pipeline_id="p", status=JobStatus.RUNNING,
                  priority=15, dependent_job_ids=["1"], input_data={"config": {"k": 1}})
        restored = Job.from_dict(job.to_dict())

        assert restored == job


class TestPipeline:
    """Pipeline job collection and status helpers."""

    def test_add_job_is_idempotent(self):
        pipeline = Pipeline(id="p", workflow_id="wf")
        job = Job(node_id="a", id="1")
        pipeline.add_job(job).add_job(job)

        assert pipeline.job_ids == ["1"]

        pipeline.remove_job(job)
        assert pipeline.job_ids == []

    def test_add_unsaved_job_raises(self):
        with pytest.raises(ValueError):
            Pipeline(id="p", workflow_id="wf").add_job(Job(node_id="a"))

    def test_pause_and_resume(self):
        pipeline = Pipeline(id="p", workflow_id="wf").mark_as_started()
        pipeline.pause()
        assert pipeline.status == PipelineStatus.PAUSED
        assert not pipeline.is_running

        pipeline.resume()
        assert pipeline.is_running

    def test_finished_states(self):
        assert Pipeline(id="p", workflow_id="wf").mark_as_completed().is_finished
        assert Pipeline(id="p", workflow_id="wf").mark_as_failed("x").is_finished
        assert Pipeline(id="p", workflow_id="wf").mark_as_cancelled().is_finished
        assert not Pipeline(id="p", workflow_id="wf").is_finished

    def test_dict_round_trip(self):
        pipeline = Pipeline(id="p", workflow_id="wf", job_ids=["1", "2"],
                            retry_strategy="stop_on_failure")
        assert Pipeline.from_dict(pipeline.to_dict()) == pipeline


class TestJobAggregates:

    def test_counts(self):
        jobs = [
            Job(node_id="a", status=JobStatus.COMPLETED),
            Job(node_id="b", status=JobStatus.COMPLETED),
            Job(node_id="c", status=JobStatus.FAILED),
            Job(node_id="d"),
        ]
        counts = calculate_job_counts(jobs)

        assert counts == {"total": 4, "pending": 1, "running": 0, "completed": 2,
                          "failed": 1, "cancelled": 0}

    def test_all_jobs_completed(self):
        assert not all_jobs_completed([])
        assert all_jobs_completed([Job(node_id="a", status=JobStatus.COMPLETED),
                                   Job(node_id="b", status=JobStatus.FAILED)])
        assert not all_jobs_completed([Job(node_id="a", status=JobStatus.RUNNING)])
