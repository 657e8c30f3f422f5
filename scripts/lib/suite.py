# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2025 The Linux Foundation

"""PostgreSQL image scenarios.

Each scenario stands up its own containers through the context's
:class:`TopologyBuilder`, waits on them through the polling helpers and
asserts with :func:`expect`.  Containers, volumes and cidfiles are
released by the runner when the scenario ends, whatever the outcome.

The scenarios are registered on :data:`REGISTRY` in the order they run.
"""

from __future__ import annotations

import logging
import uuid

from errors import ScenarioSkipped
from health_check import assert_login_access, wait_for_connection, wait_for_ready
from polling import PollCondition
from replication import wait_for_replicas, wait_for_value, write_value
from scenarios import ScenarioContext, ScenarioRegistry, expect
from topology import PGDATA, ContainerHandle

logger = logging.getLogger(__name__)

REGISTRY = ScenarioRegistry()

# Upgrades rewrite the whole cluster, give them longer
_UPGRADE_READINESS = PollCondition(max_attempts=120, delay=2.0)

_VERY_LONG_NAME = "a" * 64


def _app_env(
    user: str = "user",
    password: str = "pass",
    database: str = "db",
    admin_password: str | None = None,
    **extra: str,
) -> dict[str, str]:
    env = {
        "POSTGRESQL_USER": user,
        "POSTGRESQL_PASSWORD": password,
        "POSTGRESQL_DATABASE": database,
    }
    if admin_password is not None:
        env["POSTGRESQL_ADMIN_PASSWORD"] = admin_password
    env.update(extra)
    return env


def _ensure_image(ctx: ScenarioContext, image: str) -> None:
    """Pull *image* unless it is already present locally."""
    if ctx.docker.image_exists(image):
        return
    logger.info("Image %s not present locally", image)
    ctx.docker.pull_image(image)


def _start(
    ctx: ScenarioContext,
    name: str,
    env: dict[str, str],
    *,
    volumes: dict[str, str] | None = None,
    image: str | None = None,
) -> ContainerHandle:
    """Create a container and wait until it accepts TCP connections."""
    handle = ctx.builder.create_instance(name, env=env, volumes=volumes, image=image)
    wait_for_ready(ctx.docker, handle, ctx.poll)
    return handle


def _check_crud(
    ctx: ScenarioContext,
    handle: ContainerHandle,
    *,
    user: str,
    password: str,
    database: str,
) -> None:
    """Create a table, insert rows and read them back over the network."""
    address = handle.address

    def _run(sql: str) -> str:
        return ctx.client.query_value(
            address, sql, user=user, password=password, database=database
        )

    _run("CREATE TABLE tbl (col1 VARCHAR(20), col2 VARCHAR(20));")
    _run(
        "INSERT INTO tbl VALUES "
        "('foo1', 'bar1'), ('foo2', 'bar2'), ('foo3', 'bar3');"
    )
    rows = _run("SELECT * FROM tbl ORDER BY col1;")
    expect(
        rows.splitlines() == ["foo1|bar1", "foo2|bar2", "foo3|bar3"],
        f"Unexpected table contents: {rows!r}",
    )
    _run("DROP TABLE tbl;")


def _check_clean_shutdown(handle: ContainerHandle) -> None:
    handle.stop(timeout=60)
    code = handle.exit_code()
    expect(code == 0, f"{handle.name} exited with {code} on stop")


# ---------------------------------------------------------------------------
# Container creation
# ---------------------------------------------------------------------------


_INVALID_ENVIRONMENTS: list[tuple[str, dict[str, str]]] = [
    ("no variables", {}),
    (
        "user and password without database",
        {"POSTGRESQL_USER": "user", "POSTGRESQL_PASSWORD": "pass"},
    ),
    (
        "user and database without password",
        {"POSTGRESQL_USER": "user", "POSTGRESQL_DATABASE": "db"},
    ),
    (
        "password and database without user",
        {"POSTGRESQL_PASSWORD": "pass", "POSTGRESQL_DATABASE": "db"},
    ),
    (
        "user named postgres together with admin password",
        _app_env(user="postgres", admin_password="admin"),
    ),
    ("empty admin password only", {"POSTGRESQL_ADMIN_PASSWORD": ""}),
    ("user name with a space", _app_env(user="us er")),
    ("password with a leading space", _app_env(password=" pass")),
    ("database name too long", _app_env(database=_VERY_LONG_NAME)),
    ("user name too long", _app_env(user=_VERY_LONG_NAME)),
    ("non-numeric max connections", _app_env(POSTGRESQL_MAX_CONNECTIONS="12A")),
    (
        "non-numeric max prepared transactions",
        _app_env(POSTGRESQL_MAX_PREPARED_TRANSACTIONS="12A"),
    ),
]


@REGISTRY.register(
    "container_creation",
    "Invalid environment combinations must make the container exit",
)
def container_creation(ctx: ScenarioContext) -> None:
    not_failing = [
        label
        for label, env in _INVALID_ENVIRONMENTS
        if not ctx.builder.assert_creation_fails(env)
    ]
    expect(
        not not_failing,
        "Container creation did not fail fast for: " + "; ".join(not_failing),
    )


# ---------------------------------------------------------------------------
# General usage
# ---------------------------------------------------------------------------


@REGISTRY.register(
    "general", "Login, access control and basic queries for user/admin combinations"
)
def general(ctx: ScenarioContext) -> None:
    combinations = [
        ("no_admin", _app_env()),
        ("admin", _app_env(admin_password="r00t")),
        ("only_admin", {"POSTGRESQL_ADMIN_PASSWORD": "r00t"}),
    ]
    for label, env in combinations:
        logger.info("Combination: %s", label)
        handle = _start(ctx, f"general-{label}", env)

        user = env.get("POSTGRESQL_USER")
        if user:
            password = env["POSTGRESQL_PASSWORD"]
            database = env["POSTGRESQL_DATABASE"]
            wait_for_connection(
                ctx.client,
                handle,
                user=user,
                password=password,
                database=database,
                condition=ctx.poll,
            )
            for attempt, expected in ((password, True), (f"{password}_foo", False)):
                assert_login_access(
                    ctx.client,
                    handle,
                    user=user,
                    password=attempt,
                    database=database,
                    expected=expected,
                )

        admin_password = env.get("POSTGRESQL_ADMIN_PASSWORD")
        if admin_password:
            for attempt, expected in (
                (admin_password, True),
                (f"{admin_password}_foo", False),
            ):
                assert_login_access(
                    ctx.client,
                    handle,
                    user="postgres",
                    password=attempt,
                    expected=expected,
                )

        if user:
            _check_crud(ctx, handle, user=user, password=password, database=database)
        else:
            _check_crud(
                ctx,
                handle,
                user="postgres",
                password=admin_password or "",
                database="postgres",
            )

        _check_clean_shutdown(handle)
        handle.remove()


# ---------------------------------------------------------------------------
# Password change on restart
# ---------------------------------------------------------------------------


@REGISTRY.register(
    "change_password", "New passwords apply to an existing data directory"
)
def change_password(ctx: ScenarioContext) -> None:
    volume = ctx.builder.create_volume("change-password-data")
    volumes = {volume: PGDATA}

    first = _start(
        ctx,
        "change-password",
        _app_env(password="password", admin_password="adminPassword"),
        volumes=volumes,
    )
    wait_for_connection(
        ctx.client,
        first,
        user="user",
        password="password",
        database="db",
        condition=ctx.poll,
    )
    ctx.client.query_value(
        first.address,
        "CREATE TABLE tbl (a integer); INSERT INTO tbl VALUES (42);",
        user="user",
        password="password",
        database="db",
    )
    first.stop()
    first.remove()

    second = _start(
        ctx,
        "change-password",
        _app_env(password="NEWpassword", admin_password="NEWadminPassword"),
        volumes=volumes,
    )
    wait_for_connection(
        ctx.client,
        second,
        user="user",
        password="NEWpassword",
        database="db",
        condition=ctx.poll,
    )

    logins = [
        ("user", "password", "db", False),
        ("user", "NEWpassword", "db", True),
        ("postgres", "adminPassword", "postgres", False),
        ("postgres", "NEWadminPassword", "postgres", True),
    ]
    for user, password, database, expected in logins:
        assert_login_access(
            ctx.client,
            second,
            user=user,
            password=password,
            database=database,
            expected=expected,
        )

    value = ctx.client.query_value(
        second.address,
        "SELECT a FROM tbl;",
        user="user",
        password="NEWpassword",
        database="db",
    )
    expect(value == "42", f"Data did not survive the restart: {value!r}")


# ---------------------------------------------------------------------------
# Configuration through environment
# ---------------------------------------------------------------------------


_TUNING = {
    "POSTGRESQL_MAX_CONNECTIONS": ("max_connections", "42"),
    "POSTGRESQL_MAX_PREPARED_TRANSACTIONS": ("max_prepared_transactions", "42"),
    "POSTGRESQL_SHARED_BUFFERS": ("shared_buffers", "64MB"),
    "POSTGRESQL_EFFECTIVE_CACHE_SIZE": ("effective_cache_size", "256MB"),
}


@REGISTRY.register(
    "config_tuning", "Tuning variables end up in the server configuration"
)
def config_tuning(ctx: ScenarioContext) -> None:
    tuning_env = {name: value for name, (_setting, value) in _TUNING.items()}
    handle = _start(ctx, "config-tuning", _app_env(**tuning_env))

    mismatches = []
    for setting, wanted in _TUNING.values():
        actual = ctx.client.admin_query(handle.cid, f"SHOW {setting};")
        if actual != wanted:
            mismatches.append(f"{setting}={actual!r} (wanted {wanted!r})")
        else:
            logger.info("%s = %s ✅", setting, actual)
    expect(not mismatches, "Configuration not applied: " + ", ".join(mismatches))


# ---------------------------------------------------------------------------
# Replication
# ---------------------------------------------------------------------------


def _cluster_env() -> dict[str, str]:
    return _app_env(
        database="postgres",
        admin_password="r00t",
        POSTGRESQL_MASTER_USER="master",
        POSTGRESQL_MASTER_PASSWORD="master",
    )


@REGISTRY.register("replication", "Primary with two replicas streams writes to both")
def replication(ctx: ScenarioContext) -> None:
    cluster = ctx.builder.create_cluster(
        "replication",
        2,
        _cluster_env(),
        before_replicas=lambda primary: wait_for_ready(ctx.docker, primary, ctx.poll),
    )
    for replica in cluster.replicas:
        wait_for_ready(ctx.docker, replica, ctx.poll)

    wait_for_replicas(ctx.client, cluster, ctx.poll)

    value = f"value_{uuid.uuid4().hex[:8]}"
    write_value(ctx.client, cluster.primary, "replicated", value)
    wait_for_value(ctx.client, cluster, "replicated", value, ctx.poll)


@REGISTRY.register(
    "primary_restart", "Replicas follow a replacement primary that keeps the data"
)
def primary_restart(ctx: ScenarioContext) -> None:
    volume = ctx.builder.create_volume("primary-data")

    def _ready(primary: ContainerHandle) -> None:
        wait_for_ready(ctx.docker, primary, ctx.poll)

    cluster = ctx.builder.create_cluster(
        "primary-restart",
        2,
        _cluster_env(),
        primary_volumes={volume: PGDATA},
        before_replicas=_ready,
    )
    wait_for_replicas(ctx.client, cluster, ctx.poll)
    before = f"before_{uuid.uuid4().hex[:8]}"
    write_value(ctx.client, cluster.primary, "restart_check", before)
    wait_for_value(ctx.client, cluster, "restart_check", before, ctx.poll)

    old_primary = cluster.primary.name
    cluster = ctx.builder.replace_primary(cluster, before_replicas=_ready)
    expect(cluster.primary.name != old_primary, "Primary was not replaced")
    expect(
        len(cluster.replicas) == 2,
        f"Expected 2 replicas after restart, got {len(cluster.replicas)}",
    )

    wait_for_replicas(ctx.client, cluster, ctx.poll)
    wait_for_value(ctx.client, cluster, "restart_check", before, ctx.poll)

    after = f"after_{uuid.uuid4().hex[:8]}"
    write_value(ctx.client, cluster.primary, "restart_check", after)
    wait_for_value(ctx.client, cluster, "restart_check", after, ctx.poll)


# ---------------------------------------------------------------------------
# Build variants
# ---------------------------------------------------------------------------


@REGISTRY.register(
    "s2i_config_hook", "s2i application config and init hooks are applied"
)
def s2i_config_hook(ctx: ScenarioContext) -> None:
    image = ctx.builder.build_variant(ctx.config.s2i_source_path)
    handle = _start(ctx, "s2i", _app_env(), image=image)
    wait_for_connection(
        ctx.client,
        handle,
        user="user",
        password="pass",
        database="db",
        condition=ctx.poll,
    )

    shared_buffers = ctx.client.admin_query(handle.cid, "SHOW shared_buffers;")
    expect(
        shared_buffers == "111MB",
        f"postgresql-cfg not applied: shared_buffers={shared_buffers!r}",
    )

    marker = ctx.client.admin_query(
        handle.cid, "SELECT a FROM s2i_marker;", database="db"
    )
    expect(marker == "init-hook", f"postgresql-init hook did not run: {marker!r}")


# ---------------------------------------------------------------------------
# Data directory upgrade and migration
# ---------------------------------------------------------------------------


def _require_previous_image(ctx: ScenarioContext) -> str:
    if not ctx.config.upgrade_from_image:
        raise ScenarioSkipped("UPGRADE_FROM_IMAGE is not set")
    return ctx.config.upgrade_from_image


@REGISTRY.register(
    "upgrade", "A data directory from the previous major version is upgraded in place"
)
def upgrade(ctx: ScenarioContext) -> None:
    old_image = _require_previous_image(ctx)
    _ensure_image(ctx, old_image)
    volume = ctx.builder.create_volume("upgrade-data")
    volumes = {volume: PGDATA}

    old = _start(
        ctx,
        "upgrade-old",
        _app_env(admin_password="r00t"),
        volumes=volumes,
        image=old_image,
    )
    ctx.client.admin_query(
        old.cid,
        "CREATE TABLE upgraded (a TEXT); INSERT INTO upgraded VALUES ('kept');",
        database="db",
    )
    old.stop(timeout=60)
    old.remove()

    new = ctx.builder.create_instance(
        "upgrade-new",
        env=_app_env(admin_password="r00t", POSTGRESQL_UPGRADE="copy"),
        volumes=volumes,
    )
    wait_for_ready(ctx.docker, new, _UPGRADE_READINESS)

    version = ctx.client.admin_query(new.cid, "SHOW server_version;")
    expect(
        version.split(".", 1)[0] == str(ctx.config.major_version),
        f"Server reports version {version!r}, expected {ctx.config.version}",
    )
    kept = ctx.client.admin_query(new.cid, "SELECT a FROM upgraded;", database="db")
    expect(kept == "kept", f"Data lost during upgrade: {kept!r}")


@REGISTRY.register(
    "migration", "Data is pulled from a running remote server on first start"
)
def migration(ctx: ScenarioContext) -> None:
    source_image = ctx.config.image_name
    if ctx.config.upgrade_from_image:
        source_image = ctx.config.upgrade_from_image
        _ensure_image(ctx, source_image)

    source = _start(
        ctx, "migration-source", _app_env(admin_password="r00t"), image=source_image
    )
    ctx.client.admin_query(
        source.cid,
        "CREATE TABLE migrated (a TEXT); INSERT INTO migrated VALUES ('moved');",
        database="db",
    )

    target = _start(
        ctx,
        "migration-target",
        {
            "POSTGRESQL_MIGRATION_REMOTE_HOST": source.address,
            "POSTGRESQL_MIGRATION_ADMIN_PASSWORD": "r00t",
            "POSTGRESQL_MIGRATION_IGNORE_ERRORS": "yes",
        },
    )
    moved = ctx.client.admin_query(target.cid, "SELECT a FROM migrated;", database="db")
    expect(moved == "moved", f"Migrated data missing: {moved!r}")
