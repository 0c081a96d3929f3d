"""Click-based CLI for evalgate.

Provides a command-line interface for registering agents, running enhancement
proposals and resolving human approvals against a durable state database.

Usage:
    evalgate register agent-1 --param temperature=0.7 --param top_k=40
    evalgate propose agent-1 --delta temperature=0.05 --task mypkg.tasks:run_trial
    evalgate pending
    evalgate decide apr_prop_0123456789ab approved
    evalgate status prop_0123456789ab
    evalgate history agent-1
    evalgate recover --task mypkg.tasks:run_trial
    evalgate demo --agents 6
"""

import importlib
import json
import sys
import tempfile
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import click
from dotenv import load_dotenv
from tqdm import tqdm

# Load environment variables from .env file
load_dotenv()

from evalgate import __version__
from evalgate.engine import Engine, open_engine
from evalgate.errors import EvalGateError
from evalgate.lifecycle.proposers import GaussianDeltaProposer
from evalgate.sampling.base import Sampler
from evalgate.sampling.executor import TaskExecutorSampler
from evalgate.sampling.synthetic import SyntheticSampler, make_quadratic_objective
from evalgate.schemas.engine_config import BusyPolicy, EngineConfigV1, load_engine_config
from evalgate.schemas.lifecycle_record import LifecycleRecordV1
from evalgate.schemas.proposal import ProposalRequestV1, ProposalState
from evalgate.utils.logging import configure_logging

STATE_COLORS = {
    ProposalState.COMMITTED: "green",
    ProposalState.ROLLED_BACK: "yellow",
    ProposalState.FAILED: "red",
    ProposalState.AWAITING_APPROVAL: "cyan",
}


def _parse_assignments(values: Tuple[str, ...], option: str) -> Dict[str, float]:
    """Parse repeated ``name=value`` options into a float mapping."""
    parsed = {}
    for item in values:
        name, sep, raw = item.partition("=")
        if not sep or not name:
            raise click.BadParameter(f"expected name=value, got '{item}'", param_hint=option)
        try:
            parsed[name.strip()] = float(raw)
        except ValueError:
            raise click.BadParameter(f"'{raw}' is not a number", param_hint=option)
    return parsed


def _load_task_sampler(task: str, max_workers: int) -> Sampler:
    """Build a TaskExecutorSampler from a ``package.module:function`` reference."""
    module_name, sep, attr = task.partition(":")
    if not sep or not module_name or not attr:
        raise click.BadParameter(
            f"expected package.module:function, got '{task}'", param_hint="--task"
        )
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise click.BadParameter(f"cannot import '{module_name}': {e}", param_hint="--task")
    task_fn = getattr(module, attr, None)
    if not callable(task_fn):
        raise click.BadParameter(f"'{task}' is not callable", param_hint="--task")
    return TaskExecutorSampler(task_fn, max_workers=max_workers)


def _engine(ctx: click.Context, task: Optional[str] = None) -> Engine:
    config: EngineConfigV1 = ctx.obj["config"]
    sampler = _load_task_sampler(task, config.sampling.max_workers) if task else None
    engine = open_engine(config, sampler=sampler)
    ctx.call_on_close(engine.close)
    return engine


def _format_record(record: LifecycleRecordV1) -> str:
    return f"{record.proposal_id}  {record.agent_id:<20} {record.state.value}"


def _echo_record(record: LifecycleRecordV1, verbose: bool = False) -> None:
    color = STATE_COLORS.get(record.state, "white")
    click.echo(f"Proposal:  {record.proposal_id}")
    click.echo(f"Agent:     {record.agent_id} (base v{record.base_version})")
    click.echo("State:     ", nl=False)
    click.secho(record.state.value, fg=color, bold=True)
    if record.reason:
        click.echo(f"Reason:    {record.reason}")
    if record.failure_detail:
        click.echo(f"Detail:    {record.failure_detail}")
    click.echo(f"Delta:     {record.proposal.delta}")

    comparison = record.comparison
    if comparison is not None:
        low, high = comparison.confidence_interval
        click.echo(
            f"Result:    improvement={comparison.improvement_pct:+.2%} "
            f"d={comparison.effect_size:.3f} p={comparison.p_value:.4g} "
            f"CI{comparison.confidence_level:.0%}=[{low:.4g}, {high:.4g}]"
        )
    if record.committed_version is not None:
        click.echo(f"Committed: v{record.committed_version}")
    if record.approval_request_id and record.state == ProposalState.AWAITING_APPROVAL:
        click.echo(f"Approval:  evalgate decide {record.approval_request_id} approved|rejected")

    if verbose:
        for label, summary in (
            ("Baseline:", record.baseline_summary),
            ("Candidate:", record.candidate_summary),
        ):
            if summary is not None:
                click.echo(
                    f"{label:<10} n={summary.n} success={summary.success_rate:.0%} "
                    f"mean={summary.mean:.4g} sd={summary.stddev:.4g} "
                    f"trial={summary.mean_duration_ms:.1f}ms"
                )
        click.echo("Transitions:")
        for t in record.transitions:
            source = t.from_state.value if t.from_state else "-"
            click.echo(
                f"  {t.at:%Y-%m-%d %H:%M:%S}  {source:>17} -> {t.to_state.value:<17} {t.note}"
            )


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, path_type=Path),
    default=None,
    envvar="EVALGATE_CONFIG",
    help="Engine configuration (YAML or JSON)",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    help="Console logging level",
)
@click.pass_context
def cli(ctx: click.Context, config_path: Optional[Path], log_level: str):
    """
    evalgate - Enhancement Validation Engine.

    Proposes parameter changes for agents, measures them against the current
    configuration, and commits only statistically significant improvements.
    """
    try:
        config = load_engine_config(config_path)
    except Exception as e:
        click.secho(f"Invalid configuration: {e}", fg="red", err=True)
        sys.exit(1)

    log_file = Path(config.log_file) if config.log_file else None
    configure_logging(log_file=log_file, log_level=config.log_level, console_level=log_level)

    ctx.ensure_object(dict)
    ctx.obj["config"] = config


@cli.command()
@click.argument("agent_id")
@click.option("--param", "params", multiple=True, help="Parameter as name=value (repeatable)")
@click.option(
    "--params-file",
    type=click.Path(exists=True, path_type=Path),
    default=None,
    help="JSON object of parameter values",
)
@click.pass_context
def register(ctx: click.Context, agent_id: str, params: Tuple[str, ...], params_file: Optional[Path]):
    """
    Register an agent with its initial configuration (version 1).

    Examples:

        \b
        evalgate register agent-1 --param temperature=0.7 --param top_k=40

        \b
        evalgate register agent-1 --params-file params.json
    """
    parameters: Dict[str, float] = {}
    if params_file:
        with open(params_file, "r") as f:
            parameters.update({k: float(v) for k, v in json.load(f).items()})
    parameters.update(_parse_assignments(params, "--param"))

    if not parameters:
        raise click.UsageError("at least one parameter is required")

    engine = _engine(ctx)
    try:
        config = engine.config_store.register(agent_id, parameters)
    except (ValueError, EvalGateError) as e:
        click.secho(f"Registration failed: {e}", fg="red", err=True)
        sys.exit(1)

    click.secho(f"Registered '{agent_id}' at v{config.version}", fg="green")
    for name, value in sorted(config.parameters.items()):
        click.echo(f"  {name} = {value}")


@cli.command()
@click.argument("agent_id")
@click.option("--delta", "deltas", multiple=True, help="Additive change as name=value (repeatable)")
@click.option("--scenarios", type=int, default=None, help="Override trials per batch")
@click.option("--description", default="", help="Free-text description")
@click.option(
    "--task",
    envvar="EVALGATE_TASK",
    required=True,
    help="Trial function as package.module:function",
)
@click.pass_context
def propose(
    ctx: click.Context,
    agent_id: str,
    deltas: Tuple[str, ...],
    scenarios: Optional[int],
    description: str,
    task: str,
):
    """
    Propose a change for an agent and run it through the lifecycle.

    Without --delta, a delta is proposed from the agent's history.

    Examples:

        \b
        evalgate propose agent-1 --delta temperature=0.05 --task mypkg.tasks:run_trial
    """
    delta = _parse_assignments(deltas, "--delta") if deltas else None
    engine = _engine(ctx, task)

    try:
        request = ProposalRequestV1(
            agent_id=agent_id,
            delta=delta,
            scenario_count=scenarios,
            description=description,
        )
        record = engine.fleet.submit(request).result()
    except Exception as e:
        click.secho(f"Proposal failed: {e}", fg="red", err=True)
        sys.exit(1)

    _echo_record(record)
    if record.state == ProposalState.FAILED:
        sys.exit(1)


@cli.command()
@click.argument("request_id")
@click.argument("decision", type=click.Choice(["approved", "rejected"]))
@click.pass_context
def decide(ctx: click.Context, request_id: str, decision: str):
    """
    Record a human decision for a pending approval request.

    Examples:

        \b
        evalgate decide apr_prop_0123456789ab approved
    """
    engine = _engine(ctx)
    if engine.approval_gate is None:
        click.secho("Human approval is not enabled in this configuration", fg="red", err=True)
        sys.exit(1)

    try:
        record = engine.fleet.resolve_approval(request_id, decision).result()
    except EvalGateError as e:
        click.secho(f"Decision failed: {e}", fg="red", err=True)
        sys.exit(1)

    _echo_record(record)


@cli.command()
@click.argument("proposal_id")
@click.pass_context
def cancel(ctx: click.Context, proposal_id: str):
    """Cancel a proposal that has not been committed."""
    engine = _engine(ctx)
    try:
        record = engine.fleet.cancel(proposal_id)
    except EvalGateError as e:
        click.secho(f"Cancel failed: {e}", fg="red", err=True)
        sys.exit(1)

    _echo_record(record)


@cli.command()
@click.argument("proposal_id")
@click.option("--json", "as_json", is_flag=True, help="Print the raw lifecycle record")
@click.option("--verbose", "-v", is_flag=True, help="Show transition history")
@click.pass_context
def status(ctx: click.Context, proposal_id: str, as_json: bool, verbose: bool):
    """Show the lifecycle record of a proposal."""
    engine = _engine(ctx)
    record = engine.lifecycle_store.get(proposal_id)
    if record is None:
        click.secho(f"Unknown proposal '{proposal_id}'", fg="red", err=True)
        sys.exit(1)

    if as_json:
        click.echo(record.model_dump_json(indent=2))
    else:
        _echo_record(record, verbose=verbose)


@cli.command()
@click.argument("agent_id")
@click.pass_context
def history(ctx: click.Context, agent_id: str):
    """List an agent's proposals and its current configuration."""
    engine = _engine(ctx)
    config = engine.config_store.get(agent_id)
    if config is None:
        click.secho(f"Unknown agent '{agent_id}'", fg="red", err=True)
        sys.exit(1)

    click.secho(f"{agent_id} v{config.version}", bold=True)
    for name, value in sorted(config.parameters.items()):
        click.echo(f"  {name} = {value}")
    click.echo("")

    records = engine.lifecycle_store.list(agent_id=agent_id)
    if not records:
        click.secho("No proposals", fg="yellow")
        return

    for record in records:
        click.echo(f"  {_format_record(record):<60} ", nl=False)
        comparison = record.comparison
        if comparison is not None:
            click.secho(
                f"{comparison.improvement_pct:+.2%} (p={comparison.p_value:.3g})",
                fg=STATE_COLORS.get(record.state, "white"),
            )
        else:
            click.secho(record.reason or "", fg=STATE_COLORS.get(record.state, "white"))


@cli.command()
@click.pass_context
def pending(ctx: click.Context):
    """List unfinished proposals and approval requests awaiting a decision."""
    engine = _engine(ctx)

    records = engine.lifecycle_store.list(non_terminal_only=True)
    if not records:
        click.secho("No unfinished proposals", fg="green")
    else:
        click.secho(f"{len(records)} unfinished proposal(s):", bold=True)
        for record in records:
            click.echo(f"  {_format_record(record)}")

    if engine.approval_gate is None:
        return

    requests = engine.approval_gate.pending()
    click.echo("")
    if not requests:
        click.secho("No approval requests pending", fg="green")
        return
    click.secho(f"{len(requests)} approval request(s) pending:", bold=True)
    for request in requests:
        summary = request.summary
        click.echo(
            f"  {request.request_id}  {request.agent_id:<20} "
            f"improvement={summary.get('improvement_pct') or 0.0:+.2%} "
            f"impact={summary.get('impact_score') or 0.0:.3f}"
        )


@cli.command()
@click.option(
    "--task",
    envvar="EVALGATE_TASK",
    default=None,
    help="Trial function as package.module:function (needed to resume sampling)",
)
@click.pass_context
def recover(ctx: click.Context, task: Optional[str]):
    """
    Resume every unfinished proposal after a crash or restart.

    Examples:

        \b
        evalgate recover --task mypkg.tasks:run_trial
    """
    engine = _engine(ctx, task)

    needs_sampler = [
        r for r in engine.recovery.pending_records()
        if r.state != ProposalState.AWAITING_APPROVAL
    ]
    if needs_sampler and task is None:
        click.secho(
            f"{len(needs_sampler)} proposal(s) need sampling to resume; pass --task",
            fg="red",
            err=True,
        )
        sys.exit(1)

    handles = engine.fleet.recover()
    if not handles:
        click.secho("Nothing to recover", fg="green")
        return

    for handle in handles:
        record = handle.result()
        click.echo(f"  {_format_record(record):<60} ", nl=False)
        click.secho(record.reason or "", fg=STATE_COLORS.get(record.state, "white"))


@cli.command()
@click.option("--agents", type=int, default=6, help="Number of synthetic agents")
@click.option("--rounds", type=int, default=3, help="Proposals per agent")
@click.option("--scenarios", type=int, default=60, help="Trials per batch")
@click.option("--concurrency", type=int, default=4, help="Concurrent lifecycles (K)")
@click.option("--noise", type=float, default=5.0, help="Trial noise standard deviation")
@click.option("--seed", type=int, default=42, help="Random seed")
@click.option(
    "--state-db",
    type=click.Path(path_type=Path),
    default=None,
    help="State database (default: a temporary file)",
)
@click.pass_context
def demo(
    ctx: click.Context,
    agents: int,
    rounds: int,
    scenarios: int,
    concurrency: int,
    noise: float,
    seed: int,
    state_db: Optional[Path],
):
    """
    Run a synthetic fleet through several enhancement rounds.

    Every agent has a quadratic objective with its optimum away from the
    starting configuration, so early proposals tend to commit and later
    ones are rejected as the agents converge.
    """
    base: EngineConfigV1 = ctx.obj["config"]
    db_path = state_db or Path(tempfile.mkdtemp(prefix="evalgate-demo-")) / "state.sqlite"
    config = base.model_copy(
        update={
            "state_db": str(db_path),
            "sampling": base.sampling.model_copy(update={"scenario_count": scenarios}),
            "fleet": base.fleet.model_copy(
                update={"max_concurrency": concurrency, "busy_policy": BusyPolicy.QUEUE}
            ),
        }
    )

    sampler = SyntheticSampler(
        objective=make_quadratic_objective({"x": 1.0, "y": -0.5}, curvature=20.0),
        noise_std=noise,
        failure_rate=0.02,
    )
    engine = open_engine(
        config,
        sampler=sampler,
        proposer=GaussianDeltaProposer(step_scale=0.3, seed=seed),
    )
    ctx.call_on_close(engine.close)

    agent_ids: List[str] = []
    for i in range(agents):
        agent_id = f"demo-agent-{i:02d}"
        if engine.config_store.get(agent_id) is None:
            engine.config_store.register(agent_id, {"x": 0.0, "y": 0.0})
        agent_ids.append(agent_id)

    click.secho(
        f"Running {agents} agents x {rounds} rounds ({scenarios} scenarios, K={concurrency})",
        bold=True,
    )
    click.echo(f"State database: {db_path}")

    with tqdm(total=agents * rounds, desc="Proposals", unit="proposal") as progress:
        for round_index in range(rounds):
            handles = engine.fleet.submit_many(
                ProposalRequestV1(agent_id=agent_id, description=f"demo round {round_index + 1}")
                for agent_id in agent_ids
            )
            for handle in handles:
                record = handle.result()
                progress.update(1)
                progress.set_postfix(last=record.state.value)

    snapshot = engine.metrics.snapshot()
    click.echo("")
    click.secho("Fleet summary", bold=True)
    click.echo(f"  Proposals:        {snapshot['total']}")
    click.secho(f"  Committed:        {snapshot['committed']}", fg="green")
    click.secho(f"  Rolled back:      {snapshot['rolled_back']}", fg="yellow")
    click.secho(f"  Failed:           {snapshot['failed']}", fg="red")
    click.echo(f"  Commit rate:      {snapshot['commit_rate']:.1%}")
    click.echo(f"  Avg improvement:  {snapshot['avg_commit_improvement_pct']:+.2%}")
    if snapshot["rollbacks_by_reason"]:
        click.echo(f"  Rollback reasons: {snapshot['rollbacks_by_reason']}")
    if snapshot["failures_by_reason"]:
        click.echo(f"  Failure reasons:  {snapshot['failures_by_reason']}")

    click.echo("")
    for agent_id in agent_ids:
        current = engine.config_store.require(agent_id)
        params = ", ".join(f"{k}={v:.3f}" for k, v in sorted(current.parameters.items()))
        click.echo(f"  {agent_id}  v{current.version}  {params}")


if __name__ == "__main__":
    cli()
