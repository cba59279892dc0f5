"""CheckReporter — mirrors a run's outcome onto a GitHub check run."""

from __future__ import annotations

import asyncio
from datetime import timedelta

import structlog

from gofer_extensions.api.github_client import GithubAppClient, GithubError
from gofer_extensions.api.host_client import HostClient, HostError
from gofer_extensions.config.duration import format_run_duration
from gofer_extensions.models.run import Run, RunStatus, StartedRun
from gofer_extensions.models.subscription import Subscription
from gofer_extensions.sources.github_events import PullRequestEvent

log = structlog.get_logger()

CONCLUSIONS = {
    RunStatus.SUCCESSFUL: "success",
    RunStatus.FAILED: "failure",
    RunStatus.CANCELLED: "cancelled",
}

_RESOURCES = (
    "### Helpful Resources\n"
    "- [GitHub Project](https://github.com/clintjedwards/gofer)\n"
    "- [Documentation](https://gofer.clintjedwards.com/docs/ref/extensions/provided/github.html)\n\n\n"
    "This pipeline is triggered automatically by events in the pull request. "
    "For further details, you can:\n"
    "- Check the logs and run history by running `gofer run get {pipeline} {run_id}`.\n"
    "- Review the associated pipeline configuration by running `gofer pipeline get {pipeline}`.\n\n"
)


def conclusion_for(status: RunStatus) -> str:
    """Coarse check-run conclusion for a host run status."""
    return CONCLUSIONS.get(status, "neutral")


class CheckReporter:
    """Post-dispatch callback for ``pull_request_with_check`` subscriptions.

    Opens an in-progress check run, polls the host until the run completes,
    then completes the check run exactly once.
    """

    def __init__(
        self,
        host: HostClient,
        github: GithubAppClient,
        host_url: str,
        poll_interval: timedelta = timedelta(minutes=1),
    ) -> None:
        self._host = host
        self._github = github
        self._host_url = host_url
        self._poll_interval = poll_interval

    def for_event(self, subscription: Subscription, event: PullRequestEvent):
        """Bind a callback for one matched subscription and pull request."""

        async def report(started: StartedRun) -> None:
            await self.report(subscription, event, started)

        return report

    def _title(self, started: StartedRun) -> str:
        return f"Run #{started.run_id} | Namespace: {started.namespace_id} | Pipeline: {started.pipeline_id}"

    def _summary(self, subscription: Subscription, started: StartedRun, run: Run | None = None) -> str:
        lines = [
            "Gofer has automatically run a pipeline in response to an event within this pull request:\n\n",
            "### Run Details\n",
            f"- **Namespace**: `{started.namespace_id}`\n",
            f"- **Pipeline**: `{started.pipeline_id}`\n",
            f"- **Subscription ID**: `{subscription.key.subscription_id}`\n",
            f"- **Run ID**: `#{started.run_id}`\n",
        ]
        if run is not None:
            lines += [
                f"- **Total Time**: `{format_run_duration(run.started_ms, run.ended_ms)}`\n",
                f"- **Status**: `{run.status}`\n",
                f"- **State**: `{run.state}`\n\n",
            ]
        lines.append(_RESOURCES.format(pipeline=started.pipeline_id, run_id=started.run_id))
        return "".join(lines)

    def details_url(self, started: StartedRun) -> str:
        return (
            f"{self._host_url}/api/namespaces/{started.namespace_id}"
            f"/pipelines/{started.pipeline_id}/runs/{started.run_id}"
        )

    async def wait_for_completion(self, subscription: Subscription, started: StartedRun) -> Run:
        """Poll the host on a fixed cadence until the run is complete. Errors are retried."""
        fields = subscription.key.log_fields()
        while True:
            try:
                run = await self._host.get_run(started.namespace_id, started.pipeline_id, started.run_id)
            except HostError as e:
                log.error("could not get run", run_id=started.run_id, error=str(e), **fields)
            else:
                if run.is_terminal:
                    return run
            await asyncio.sleep(self._poll_interval.total_seconds())

    async def report(
        self, subscription: Subscription, event: PullRequestEvent, started: StartedRun
    ) -> None:
        fields = subscription.key.log_fields()
        owner = event.repository.owner.login or event.repository.full_name.split("/", 1)[0]
        repo = event.repository.name or event.repository.full_name.split("/", 1)[-1]
        name = subscription.key.subscription_id
        title = self._title(started)

        try:
            check_run_id = await self._github.create_check_run(
                owner,
                repo,
                name=name,
                head_sha=event.pull_request.head.sha,
                title=title,
                summary=self._summary(subscription, started),
            )
        except GithubError as e:
            log.error("could not create check run", error=str(e), **fields)
            return

        run = await self.wait_for_completion(subscription, started)
        conclusion = conclusion_for(run.status)

        try:
            await self._github.update_check_run(
                owner,
                repo,
                check_run_id,
                name=name,
                conclusion=conclusion,
                details_url=self.details_url(started),
                title=title,
                summary=self._summary(subscription, started, run),
            )
        except GithubError as e:
            log.error("could not update check run", error=str(e), **fields)
            return

        log.info(
            "check run completed",
            run_id=started.run_id,
            check_run_id=check_run_id,
            conclusion=conclusion,
            **fields,
        )
