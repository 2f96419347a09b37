"""
Command dispatch for cross builds.

The dispatcher drives one invocation through its states:

    Idle -> ResolvingTargets -> AcquiringSdk -> AssemblingEnvironment
         -> GeneratingToolchain -> InvokingBuildTool -> [InvokingEmulation]
         -> Completed | Failed

Target pipelines (cache acquisition, environment assembly and toolchain
file generation) run on a small thread pool. Cargo is spawned afterwards,
once per target in request order, each with its own environment overlaid on
the inherited one.

Usage:
    from xwinkit.build.dispatcher import (
        BuildInvocation,
        CommandDispatcher,
        InvocationContext,
    )

    context = InvocationContext.create(cli_values)
    dispatcher = CommandDispatcher(context)
    exit_code = dispatcher.dispatch(BuildInvocation("build", ["--release"]))
"""

import logging
import os
import threading
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from xwinkit.build.cargo import (
    cargo_config_build_target,
    cargo_config_rustflags,
    cargo_target_dir,
    flag_values,
    split_targets,
)
from xwinkit.build.emulation import (
    MESSAGE_FORMAT,
    ArtifactCollector,
    EmulationRunner,
    ExecutionRequest,
    emulator_command,
)
from xwinkit.cmake.toolchain_generator import ToolchainFileGenerator, descriptor_path
from xwinkit.config.options import XWinOptions, resolve_options
from xwinkit.config.parser import (
    ProjectConfig,
    find_project_config,
    parse_project_config,
)
from xwinkit.core.exceptions import CollaboratorFailure, ConfigurationError
from xwinkit.core.platform import HostConventions, detect_host
from xwinkit.core.process import run_collaborator, stream_collaborator
from xwinkit.cross.environment import EnvironmentAssembler, EnvironmentPlan
from xwinkit.cross.providers import SdkProvider, provider_for_backend
from xwinkit.cross.sdk_cache import SdkCache
from xwinkit.cross.targets import TargetResolver, TargetSpec
from xwinkit.toolchain.linking import ToolLinkManager
from xwinkit.toolchain.strategies import get_backend
from xwinkit.toolchain.strategy import CompilerBackend

logger = logging.getLogger(__name__)

MAX_PIPELINE_WORKERS = 4

# How often the main thread wakes while target pipelines run
PIPELINE_POLL_SECONDS = 0.2


class DispatchState(Enum):
    IDLE = "Idle"
    RESOLVING_TARGETS = "ResolvingTargets"
    ACQUIRING_SDK = "AcquiringSdk"
    ASSEMBLING_ENVIRONMENT = "AssemblingEnvironment"
    GENERATING_TOOLCHAIN = "GeneratingToolchain"
    INVOKING_BUILD_TOOL = "InvokingBuildTool"
    INVOKING_EMULATION = "InvokingEmulation"
    COMPLETED = "Completed"
    FAILED = "Failed"


class SubcommandKind(Enum):
    DIRECT = "direct"
    EMULATED = "emulated"
    PASSTHROUGH = "passthrough"


@dataclass(frozen=True)
class Subcommand:
    """How one cargo subcommand is dispatched."""

    name: str
    kind: SubcommandKind
    cross_env: bool


SUBCOMMANDS: Dict[str, Subcommand] = {
    "build": Subcommand("build", SubcommandKind.DIRECT, True),
    "check": Subcommand("check", SubcommandKind.DIRECT, True),
    "clippy": Subcommand("clippy", SubcommandKind.DIRECT, True),
    "doc": Subcommand("doc", SubcommandKind.DIRECT, True),
    "rustc": Subcommand("rustc", SubcommandKind.DIRECT, True),
    "run": Subcommand("run", SubcommandKind.EMULATED, True),
    "test": Subcommand("test", SubcommandKind.EMULATED, True),
    "fmt": Subcommand("fmt", SubcommandKind.DIRECT, False),
    "metadata": Subcommand("metadata", SubcommandKind.DIRECT, False),
}


def subcommand_for(name: str) -> Subcommand:
    """Table entry for ``name``; unknown names pass through to cargo."""
    return SUBCOMMANDS.get(name, Subcommand(name, SubcommandKind.PASSTHROUGH, False))


@dataclass
class InvocationContext:
    """
    Everything one invocation depends on besides its arguments.

    Attributes:
        options: Resolved xwin options (carries the cache root)
        host: Host conventions
        cwd: Working directory cargo runs in
        environ: Environment the invocation started with
        project: Project configuration from ``xwinkit.yaml``
    """

    options: XWinOptions
    host: HostConventions
    cwd: Path
    environ: Mapping[str, str]
    project: ProjectConfig = field(default_factory=ProjectConfig)

    @property
    def cache_dir(self) -> Path:
        return self.options.cache_dir

    @classmethod
    def create(
        cls,
        cli_values: Optional[Mapping[str, Any]] = None,
        cwd: Optional[Path] = None,
        environ: Optional[Mapping[str, str]] = None,
        config_path: Optional[Path] = None,
        host: Optional[HostConventions] = None,
    ) -> "InvocationContext":
        """
        Build a context from CLI values, the environment and ``xwinkit.yaml``.

        Raises:
            ConfigurationError: If the project file or an option is invalid
        """
        cwd = Path(cwd) if cwd else Path.cwd()
        environ = dict(environ if environ is not None else os.environ)
        if config_path is None:
            config_path = find_project_config(cwd)
        project = parse_project_config(config_path)
        options = resolve_options(cli_values, environ, project)
        return cls(
            options=options,
            host=host or detect_host(),
            cwd=cwd,
            environ=environ,
            project=project,
        )


@dataclass(frozen=True)
class BuildInvocation:
    """A cargo subcommand with its arguments, as given by the user."""

    subcommand: str
    cargo_args: Tuple[str, ...] = ()
    program_args: Tuple[str, ...] = ()

    @property
    def fail_fast(self) -> bool:
        return "--no-fail-fast" not in self.cargo_args


@dataclass(frozen=True)
class PreparedTarget:
    """Outcome of one target pipeline."""

    spec: TargetSpec
    root: Path
    plan: EnvironmentPlan
    descriptor: Path


class CommandDispatcher:
    """
    Runs cargo subcommands with the cross environment applied.

    Args:
        context: Invocation context
        backend: Compiler backend (defaults to ``--cross-compiler``)
        provider: SDK provider (defaults to the backend's provider)
        assembler: Environment assembler
        generator: CMake toolchain file generator
        emulator: Runner for built binaries
    """

    def __init__(
        self,
        context: InvocationContext,
        backend: Optional[CompilerBackend] = None,
        provider: Optional[SdkProvider] = None,
        assembler: Optional[EnvironmentAssembler] = None,
        generator: Optional[ToolchainFileGenerator] = None,
        emulator: Optional[EmulationRunner] = None,
    ):
        self.context = context
        self.backend = backend or get_backend(context.options.cross_compiler)
        # Set on interrupt; pipelines still running stop at their next check
        self.cancelled = threading.Event()
        self.provider = provider or provider_for_backend(
            self.backend.provider_name, cancel=self.cancelled
        )
        self.cache = SdkCache(context.cache_dir, self.provider, cancel=self.cancelled)
        self.assembler = assembler or EnvironmentAssembler()
        self.generator = generator or ToolchainFileGenerator()
        self.emulator = emulator or EmulationRunner()
        self.link_manager = ToolLinkManager(
            context.cache_dir / "bin",
            self.cache.lock_manager,
            host=context.host,
            search_path=context.environ.get("PATH", ""),
        )

        self.state = DispatchState.IDLE
        self.history: List[Tuple[Optional[str], DispatchState]] = []
        self._state_lock = threading.Lock()

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def _transition(self, state: DispatchState, triple: Optional[str] = None):
        with self._state_lock:
            self.state = state
            self.history.append((triple, state))
        if triple:
            logger.debug(f"[{triple}] {state.value}")
        else:
            logger.debug(f"Dispatcher state: {state.value}")

    # ------------------------------------------------------------------
    # Target pipelines
    # ------------------------------------------------------------------

    def resolve_targets(self, triples: Sequence[str]) -> List[TargetSpec]:
        """Resolve requested triples (or the default one) into specs."""
        self._transition(DispatchState.RESOLVING_TARGETS)
        resolver = TargetResolver(
            self.context.options,
            host=self.context.host,
            project_default=self.context.project.default_target,
            config_default=lambda: cargo_config_build_target(
                self.context.environ, self.context.cwd
            ),
        )
        specs = resolver.resolve_all(triples)
        for spec in specs:
            self.backend.check_supported(spec)
        return specs

    def prepare(
        self, specs: Sequence[TargetSpec], target_dir: Path
    ) -> List[PreparedTarget]:
        """
        Run the pipeline of every target and return results in request order.

        Raises:
            AcquisitionError: If an SDK payload cannot be prepared
            AssemblyError: If a ready entry lacks an expected directory
            KeyboardInterrupt: Once running pipelines were told to stop; they
                are not waited for
        """
        self._ensure_tool_links()
        workers = max(1, min(MAX_PIPELINE_WORKERS, len(specs)))
        executor = ThreadPoolExecutor(
            max_workers=workers, thread_name_prefix="xwinkit-target"
        )
        futures = []
        try:
            for spec in specs:
                futures.append(executor.submit(self._prepare_target, spec, target_dir))
            pending = set(futures)
            while pending:
                _, pending = wait(pending, timeout=PIPELINE_POLL_SECONDS)
            return [future.result() for future in futures]
        except KeyboardInterrupt:
            logger.warning("Interrupted; cancelling target preparation")
            self.cancelled.set()
            for future in futures:
                future.cancel()
            raise
        finally:
            executor.shutdown(wait=not self.cancelled.is_set())

    def _prepare_target(self, spec: TargetSpec, target_dir: Path) -> PreparedTarget:
        self._transition(DispatchState.ACQUIRING_SDK, spec.triple)
        root = self.cache.ensure(spec)

        self._transition(DispatchState.ASSEMBLING_ENVIRONMENT, spec.triple)
        descriptor = descriptor_path(target_dir, self.backend.name, spec.triple)
        plan = self.assembler.assemble(
            spec,
            self.backend,
            self.context.host,
            root,
            base_env=self.context.environ,
            bin_dir=self.link_manager.bin_dir,
            descriptor_path=descriptor,
            config_rustflags=cargo_config_rustflags(
                spec.triple, self.context.environ, self.context.cwd
            ),
        )

        self._transition(DispatchState.GENERATING_TOOLCHAIN, spec.triple)
        self.generator.generate(plan, descriptor)
        return PreparedTarget(spec=spec, root=root, plan=plan, descriptor=descriptor)

    def _ensure_tool_links(self) -> None:
        try:
            self.link_manager.ensure_links(self.backend.linked_tools())
        except OSError as e:
            logger.warning(f"Could not create tool links: {e}")

    def ensure_cache(self, triples: Sequence[str]) -> List[Path]:
        """Populate the cache for ``triples`` without building anything."""
        specs = self.resolve_targets(triples)
        self._transition(DispatchState.ACQUIRING_SDK)
        roots = [self.cache.ensure(spec) for spec in specs]
        self._transition(DispatchState.COMPLETED)
        return roots

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def dispatch(self, invocation: BuildInvocation) -> int:
        """
        Run one cargo subcommand.

        Returns:
            Exit code of cargo or of the emulated program

        Raises:
            XwinKitError: On failures before a collaborator could run
        """
        subcommand = subcommand_for(invocation.subcommand)
        try:
            if not subcommand.cross_env:
                status = self._run_plain(invocation)
            else:
                triples, cargo_args = split_targets(invocation.cargo_args)
                specs = self.resolve_targets(triples)
                target_dir = cargo_target_dir(
                    cargo_args, self.context.environ, self.context.cwd
                )
                prepared = self.prepare(specs, target_dir)
                if subcommand.kind == SubcommandKind.EMULATED:
                    status = self._run_emulated(invocation, cargo_args, prepared)
                else:
                    status = self._run_direct(invocation, cargo_args, prepared)
        except CollaboratorFailure as e:
            self._transition(DispatchState.FAILED)
            logger.debug(str(e))
            return e.exit_code
        except BaseException:
            self._transition(DispatchState.FAILED)
            raise

        self._transition(
            DispatchState.COMPLETED if status == 0 else DispatchState.FAILED
        )
        return status

    def _run_plain(self, invocation: BuildInvocation) -> int:
        self._transition(DispatchState.INVOKING_BUILD_TOOL)
        argv = ["cargo", invocation.subcommand, *invocation.cargo_args]
        if invocation.program_args:
            argv += ["--", *invocation.program_args]
        return run_collaborator(argv, env=self.context.environ, cwd=self.context.cwd)

    def _run_direct(
        self,
        invocation: BuildInvocation,
        cargo_args: Sequence[str],
        prepared: Sequence[PreparedTarget],
    ) -> int:
        for target in prepared:
            argv = self._cargo_argv(invocation.subcommand, cargo_args, target)
            if invocation.program_args:
                argv += ["--", *invocation.program_args]
            self._spawn_cargo(argv, target)
        return 0

    def _run_emulated(
        self,
        invocation: BuildInvocation,
        cargo_args: Sequence[str],
        prepared: Sequence[PreparedTarget],
    ) -> int:
        is_test = invocation.subcommand == "test"
        # `cargo test --no-run` asked only for the test binaries to be built
        build_only = is_test and "--no-run" in cargo_args
        for target in prepared:
            if build_only:
                argv = self._cargo_argv("test", cargo_args, target)
                if invocation.program_args:
                    argv += ["--", *invocation.program_args]
                self._spawn_cargo(argv, target)
                continue

            collector = ArtifactCollector()
            if is_test:
                argv = self._cargo_argv("test", ["--no-run", *cargo_args], target)
            else:
                argv = self._cargo_argv("build", cargo_args, target)
            argv.append(MESSAGE_FORMAT)
            self._spawn_cargo(argv, target, on_line=collector)

            binaries = self._select_binaries(collector, cargo_args, is_test)
            env = target.plan.apply(self.context.environ)
            emulator = tuple(
                emulator_command(target.spec.env_target_upper, self.context.environ)
            )
            requests = [
                ExecutionRequest(binary, tuple(invocation.program_args), emulator)
                for binary in binaries
            ]

            self._transition(DispatchState.INVOKING_EMULATION, target.spec.triple)
            status = self.emulator.run_all(
                requests, env, fail_fast=invocation.fail_fast
            )
            if status != 0:
                return status
        return 0

    def _cargo_argv(
        self, subcommand: str, cargo_args: Sequence[str], target: PreparedTarget
    ) -> List[str]:
        return ["cargo", subcommand, *cargo_args, "--target", target.spec.triple]

    def _spawn_cargo(self, argv: List[str], target: PreparedTarget, on_line=None):
        self._transition(DispatchState.INVOKING_BUILD_TOOL, target.spec.triple)
        env = target.plan.apply(self.context.environ)
        if on_line is None:
            code = run_collaborator(argv, env=env, cwd=self.context.cwd)
        else:
            code = stream_collaborator(argv, on_line, env=env, cwd=self.context.cwd)
        if code != 0:
            raise CollaboratorFailure("cargo", code, target.spec.triple)

    @staticmethod
    def _select_binaries(
        collector: ArtifactCollector, cargo_args: Sequence[str], is_test: bool
    ) -> List[Path]:
        if is_test:
            return [a.path for a in collector.artifacts if a.is_test]

        candidates = [a for a in collector.artifacts if not a.is_test]
        wanted = flag_values(cargo_args, "--bin") + flag_values(cargo_args, "--example")
        if wanted:
            candidates = [a for a in candidates if a.name in wanted]
        if len(candidates) == 1:
            return [candidates[0].path]
        if not candidates:
            raise ConfigurationError("cargo did not produce an executable to run")
        names = ", ".join(sorted(a.name for a in candidates))
        raise ConfigurationError(
            f"Could not determine which binary to run (found: {names}); "
            "use --bin or --example to pick one"
        )
