"""Tests for readiness gating: trigger OR, data AND, gateway branches."""

from flowdrop.services.pipeline.models import Job, JobStatus, Pipeline
from flowdrop.services.pipeline.readiness import (
    ReadinessEvaluator,
    parse_active_branches,
    select_ready_jobs,
)


def node(node_id):
    return {"id": node_id, "type": "default", "data": {"label": node_id}}


def data_edge(source, target):
    return {"source": source, "target": target,
            "sourceHandle": f"{source}-output-value",
            "targetHandle": f"{target}-input-value"}


def trigger_edge(source, target, branch=None):
    source_handle = f"{source}-output-{branch}" if branch else f"{source}-done"
    return {"source": source, "target": target,
            "sourceHandle": source_handle,
            "targetHandle": f"{target}-input-trigger"}


def workflow(node_ids, edges):
    return {"id": "wf", "nodes": [node(n) for n in node_ids], "edges": edges}


async def generate(service, wf):
    pipeline = Pipeline(id="pipeline-1", workflow_id=wf["id"])
    await service.generate_jobs(pipeline, wf)
    return pipeline


async def complete(repository, pipeline, node_id, output=None):
    jobs = await repository.load_jobs(pipeline)
    job = next(j for j in jobs if j.node_id == node_id)
    job.mark_as_completed(output or {})
    await repository.save_job(job)
    return job


async def ready_nodes(service, pipeline):
    return [job.node_id for job in await service.get_ready_jobs(pipeline)]


class TestActiveBranches:

    def test_comma_separated_case_insensitive(self):
        assert parse_active_branches({"active_branches": "True, b ,,"}) == {"true", "b"}

    def test_list_value(self):
        assert parse_active_branches({"active_branches": ["A", " b "]}) == {"a", "b"}

    def test_missing_or_empty(self):
        assert parse_active_branches({}) == set()
        assert parse_active_branches({"active_branches": None}) == set()
        assert parse_active_branches({"active_branches": ""}) == set()


class TestDataGating:
    """Without trigger edges every data dependency must be completed."""

    async def test_linear_chain(self, service, repository):
        pipeline = await generate(service, workflow(["A", "B", "C"],
                                                    [data_edge("A", "B"), data_edge("B", "C")]))

        assert await ready_nodes(service, pipeline) == ["A"]

        await complete(repository, pipeline, "A")
        assert await ready_nodes(service, pipeline) == ["B"]

        await complete(repository, pipeline, "B")
        assert await ready_nodes(service, pipeline) == ["C"]

    async def test_all_data_sources_required(self, service, repository):
        pipeline = await generate(service, workflow(["A", "B", "C"],
                                                    [data_edge("A", "C"), data_edge("B", "C")]))

        await complete(repository, pipeline, "A")
        assert "C" not in await ready_nodes(service, pipeline)

        await complete(repository, pipeline, "B")
        assert await ready_nodes(service, pipeline) == ["C"]

    async def test_failed_source_blocks(self, service, repository):
        pipeline = await generate(service, workflow(["A", "B"], [data_edge("A", "B")]))
        jobs = await repository.load_jobs(pipeline)
        jobs[0].mark_as_failed("boom")
        await repository.save_job(jobs[0])

        assert await ready_nodes(service, pipeline) == []


class TestTriggerGating:
    """Trigger edges gate alone, with OR semantics and branch activation."""

    async def test_gateway_activates_only_taken_branch(self, service, repository):
        pipeline = await generate(service, workflow(
            ["G", "X", "Y"],
            [trigger_edge("G", "X", branch="true"), trigger_edge("G", "Y", branch="false")],
        ))

        await complete(repository, pipeline, "G", {"active_branches": "true"})

        assert await ready_nodes(service, pipeline) == ["X"]

    async def test_branch_match_ignores_case_and_spaces(self, service, repository):
        pipeline = await generate(service, workflow(
            ["G", "X"], [trigger_edge("G", "X", branch="True")],
        ))

        await complete(repository, pipeline, "G", {"active_branches": "other, TRUE "})

        assert await ready_nodes(service, pipeline) == ["X"]

    async def test_any_trigger_is_enough(self, service, repository):
        pipeline = await generate(service, workflow(
            ["G", "J"],
            [trigger_edge("G", "J", branch="true"), trigger_edge("G", "J", branch="false")],
        ))

        await complete(repository, pipeline, "G", {"active_branches": "false"})

        assert await ready_nodes(service, pipeline) == ["J"]

    async def test_trigger_suppresses_data_gating(self, service, repository):
        pipeline = await generate(service, workflow(
            ["W", "V", "Z"],
            [trigger_edge("W", "Z"), data_edge("V", "Z")],
        ))

        assert "Z" not in await ready_nodes(service, pipeline)

        await complete(repository, pipeline, "W")
        ready = await ready_nodes(service, pipeline)

        assert "Z" in ready
        assert "V" in ready

    async def test_no_branch_trigger_needs_only_completion(self, service, repository):
        pipeline = await generate(service, workflow(["W", "Z"], [trigger_edge("W", "Z")]))

        await complete(repository, pipeline, "W", {"active_branches": "unrelated"})

        assert await ready_nodes(service, pipeline) == ["Z"]

    async def test_branch_without_active_branches_is_not_ready(self, service, repository):
        pipeline = await generate(service, workflow(
            ["G", "X"], [trigger_edge("G", "X", branch="true")],
        ))

        await complete(repository, pipeline, "G", {"result": 1})

        assert await ready_nodes(service, pipeline) == []


class TestReadinessProperties:

    async def test_repeated_calls_are_identical(self, service, repository):
        pipeline = await generate(service, workflow(["A", "B", "C", "D"],
                                                    [data_edge("A", "D")]))

        first = [job.id for job in await service.get_ready_jobs(pipeline)]
        second = [job.id for job in await service.get_ready_jobs(pipeline)]

        assert first == second
        assert len(first) == 3

    async def test_ready_jobs_sorted_by_priority(self, repository):
        evaluator = ReadinessEvaluator(repository)
        pipeline = Pipeline(id="p", workflow_id="wf")
        for node_id, priority in (("late", 30), ("early", 0), ("middle", 10)):
            job = Job(node_id=node_id, pipeline_id="p", priority=priority)
            await repository.create_job(job)
            pipeline.add_job(job)

        ready = await evaluator.get_ready_jobs(pipeline)

        assert [job.node_id for job in ready] == ["early", "middle", "late"]

    async def test_only_pending_jobs_are_proposed(self, service, repository):
        pipeline = await generate(service, workflow(["A", "B"], []))
        claimed = await repository.claim_job((await repository.load_jobs(pipeline))[0].id)

        ready = await ready_nodes(service, pipeline)

        assert claimed.node_id not in ready
        assert len(ready) == 1

    def test_dangling_dependency_reference_is_not_ready(self):
        job = Job(node_id="b", id="2", dependent_job_ids=["99"])
        assert select_ready_jobs([job]) == []

    def test_job_without_dependencies_is_ready(self):
        job = Job(node_id="a", id="1", status=JobStatus.PENDING)
        assert select_ready_jobs([job]) == [job]
