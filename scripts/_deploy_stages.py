"""Production deployment stages.

These stages take their inputs from flags (fed by an outer automation driver
from earlier stage outputs) and only read the config store where the local
bootstrap already recorded a value.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Mapping
from contextlib import closing

from scripts._backend_platform import (
    dev_deployment_name,
    is_valid_deploy_key,
    production_urls_from_deploy_key,
)
from scripts._deployment_summary import (
    facts_from_session,
    render_deployment_summary,
    write_deployment_summary,
)
from scripts._env_propagation import PropagationOutcome, propagate_env
from scripts._identity_provider import (
    JWT_TEMPLATE_NAME,
    frontend_api_url_from_publishable_key,
    validate_key_prefixes,
)
from scripts._output_parsing import extract_deployment_url, extract_version
from scripts._process_gateway import CommandContext
from scripts._provisioning_errors import (
    BackendPlatformError,
    ServiceError,
    SourceHostError,
    StageFailure,
)
from scripts._provisioning_models import (
    ProvisioningSession,
    StageResult,
    StepLog,
    ToolReport,
)
from scripts._provisioning_settings import STATUS_TIMEOUT
from scripts._relay_bootstrap import bootstrap_webhook
from scripts._setup_stages import REDIRECT_KEYS, REDIRECT_PATH
from scripts._source_host import is_template_remote, repo_url_from_remote
from scripts._stage_runner import ProvisioningContext, StageSpec
from scripts._webhook_relay import webhook_endpoint_url

logger = logging.getLogger(__name__)

DEV_HOSTING_KEYS = (
    "NEXT_PUBLIC_CLERK_PUBLISHABLE_KEY",
    "CLERK_SECRET_KEY",
    "NEXT_PUBLIC_CLERK_FRONTEND_API_URL",
    "NEXT_PUBLIC_CONVEX_URL",
    "NEXT_PUBLIC_SITE_NAME",
    "CSRF_SECRET",
    "SESSION_SECRET",
    *REDIRECT_KEYS,
)
OPTIONAL_HOSTING_KEYS = ("GEMINI_API_KEY",)
GH_INSTALL_HINTS = {
    "darwin": "brew install gh",
}
GH_INSTALL_DEFAULT = "See https://cli.github.com/manual/installation"


def _detail(exc: ServiceError) -> str:
    return exc.detail or str(exc)


def _propagation_result(
    steps: StepLog,
    outcome: PropagationOutcome,
    fields: Mapping[str, object] | None = None,
) -> StageResult:
    payload = {"varsSet": outcome.vars_set, **(fields or {})}
    if outcome.success:
        return StageResult.ok(steps, payload)
    return StageResult.failure(
        "env_partially_set",
        steps,
        hint=f"Failed to set {', '.join(outcome.failed)}; re-run this step to retry them",
        fields={**payload, "varsFailed": outcome.failed},
    )


# check-tools


def run_check_tools(ctx: ProvisioningContext, session: ProvisioningSession) -> StageResult:
    """Report which external CLIs are available and the current origin."""
    source_host = ctx.source_host()
    hosting = ctx.hosting()
    tools: dict[str, object] = {}
    missing: list[str] = []

    node = ctx.run(
        "node",
        "-v",
        context=CommandContext(cwd=ctx.settings.root_dir, timeout=STATUS_TIMEOUT),
    )
    if node.success:
        tools["node"] = extract_version(node.stdout)
    else:
        tools["node"] = None
        missing.append("node")

    git_version = source_host.version("git")
    tools["git"] = git_version
    if git_version is None:
        missing.append("git")

    gh_version = source_host.version("gh")
    tools["gh"] = gh_version
    if gh_version is None:
        tools["ghAuth"] = False
        missing.append("gh")
    else:
        tools["ghAuth"] = source_host.is_authenticated()

    vercel_version = hosting.version()
    tools["vercel"] = vercel_version
    if vercel_version is None:
        missing.append("vercel")

    remote = source_host.remote_url("origin") if git_version is not None else None
    report = ToolReport(
        os=sys.platform,
        tools=tools,
        installed=[name for name in ("node", "git", "gh", "vercel") if tools.get(name)],
        missing=missing,
        git_remote=remote,
        is_upstream_template=bool(remote) and is_template_remote(remote, ctx.settings.template_repos),
    )
    session.steps.append(f"Checked tools: {', '.join(report.installed) or 'none found'}")
    return StageResult.ok(session.steps, report.to_mapping())


# github-setup


def run_github_setup(ctx: ProvisioningContext, session: ProvisioningSession) -> StageResult:
    """Move a template origin aside and create the operator's private repo."""
    steps = session.steps
    repo_name = session.flag("repo-name") or ""
    source_host = ctx.source_host()

    if source_host.version("gh") is None:
        install_hint = GH_INSTALL_HINTS.get(sys.platform, GH_INSTALL_DEFAULT)
        raise StageFailure(
            "gh_not_installed",
            hint=f"Install the GitHub CLI: {install_hint}",
            fields={"installHint": install_hint},
        )
    if not source_host.is_authenticated():
        raise StageFailure("gh_not_authenticated", hint="Run: gh auth login")

    upstream_preserved = False
    origin = source_host.remote_url("origin")
    if origin:
        if not is_template_remote(origin, ctx.settings.template_repos):
            raise StageFailure(
                "origin_exists",
                hint=(
                    "Origin remote already points to a non-template repo. "
                    "Remove it first if you want to create a new one."
                ),
                fields={"currentOrigin": origin},
            )
        if source_host.remote_url("upstream") is None:
            source_host.rename_remote("origin", "upstream")
            steps.append("Renamed template origin to upstream")
        else:
            source_host.remove_remote("origin")
            steps.append("Removed template origin (upstream already exists)")
        upstream_preserved = True

    try:
        source_host.create_private_repo(repo_name)
    except SourceHostError as exc:
        already_exists = "already exists" in exc.detail
        raise StageFailure(
            "repo_exists" if already_exists else "repo_create_failed",
            hint=(
                f"A repository named {repo_name} already exists. Choose another --repo-name."
                if already_exists
                else "gh repo create failed. Check the detail and retry."
            ),
            detail=exc.detail,
            fields={"upstreamPreserved": upstream_preserved},
        ) from exc
    steps.append("Created private GitHub repository")

    remote_url = source_host.remote_url("origin")
    steps.append(f"New origin: {remote_url}")
    return StageResult.ok(
        steps,
        {
            "repoUrl": repo_url_from_remote(remote_url) if remote_url else None,
            "remoteUrl": remote_url,
            "upstreamPreserved": upstream_preserved,
        },
    )


# convex-deploy-key


def _api_failure(exc: BackendPlatformError, hint: str) -> StageFailure:
    if exc.is_auth_failure:
        return StageFailure(
            "auth_expired",
            hint="Convex auth token expired. Run: npx convex dev to refresh",
            detail=_detail(exc),
        )
    return StageFailure("api_error", hint=hint, detail=_detail(exc))


def run_convex_deploy_key(ctx: ProvisioningContext, session: ProvisioningSession) -> StageResult:
    """Issue a production deploy key through the management API."""
    steps = session.steps
    backend = ctx.backend()
    config_path = ctx.settings.convex_config_path

    try:
        token = backend.read_access_token()
    except BackendPlatformError as exc:
        raise StageFailure(
            "config_parse_error",
            hint=f"Could not parse {config_path}. Try running: npx convex dev",
            detail=_detail(exc),
        ) from exc
    if not token:
        raise StageFailure(
            "not_logged_in",
            hint="No Convex access token found. Run: npx convex dev to log in",
        )
    steps.append("Read Convex access token from config")

    dev_deployment = ctx.store.get_configured("CONVEX_DEPLOYMENT")
    if dev_deployment is None:
        raise StageFailure(
            "no_dev_deployment",
            hint="CONVEX_DEPLOYMENT not found in the config store. Run: npx convex dev first",
        )
    dev_name = dev_deployment_name(dev_deployment)
    steps.append(f"Found dev deployment: {dev_name}")

    try:
        deployment = backend.get_deployment(dev_name, token)
    except BackendPlatformError as exc:
        raise _api_failure(exc, "Could not get deployment info from Convex API") from exc
    project_id = deployment.get("projectId")
    if not project_id:
        raise StageFailure(
            "api_error",
            hint="Convex API response did not include a project ID",
        )
    steps.append(f"Found project ID: {project_id}")

    try:
        deployments = backend.list_project_deployments(str(project_id), token)
    except BackendPlatformError as exc:
        raise _api_failure(exc, "Could not list deployments from Convex API") from exc
    production = next(
        (item for item in deployments if item.get("deploymentType") == "prod"),
        None,
    )
    if production is None or not production.get("name"):
        raise StageFailure(
            "no_prod_deployment",
            hint="No production deployment found. Create one in Convex Dashboard > Settings > Deploy Keys",
        )
    production_name = str(production["name"])
    steps.append(f"Found production deployment: {production_name}")

    try:
        deploy_key = backend.create_deploy_key(production_name, token)
    except BackendPlatformError as exc:
        raise StageFailure(
            "key_creation_failed",
            hint=(
                "Could not create deploy key. Try generating one manually in "
                "Convex Dashboard > Settings > Deploy Keys"
            ),
            detail=_detail(exc),
        ) from exc
    steps.append("Generated production deploy key")
    return StageResult.ok(steps, {"deployKey": deploy_key, "prodDeploymentName": production_name})


# validate-keys


def _require_deploy_key(deploy_key: str) -> None:
    if not is_valid_deploy_key(deploy_key):
        raise StageFailure(
            "invalid_deploy_key",
            hint="Deploy key must start with prod: and contain | separator",
        )


def run_validate_keys(ctx: ProvisioningContext, session: ProvisioningSession) -> StageResult:
    """Validate identity keys and prepare the instance for the backend."""
    steps = session.steps
    publishable_key = session.flag("clerk-pk") or ""
    secret_key = session.flag("clerk-sk") or ""

    validation = validate_key_prefixes(
        publishable_key,
        secret_key,
        require_prod=session.is_true("require-prod"),
    )
    if validation.error is not None:
        raise StageFailure(validation.error, hint=validation.hint)
    steps.append(f"Key prefixes validated ({validation.key_type} keys)")

    deploy_key = session.flag("deploy-key")
    if deploy_key is not None:
        _require_deploy_key(deploy_key)
        steps.append("Deploy key format validated")

    with closing(ctx.identity_provider(secret_key)) as identity:
        try:
            identity.count_users()
        except ServiceError as exc:
            raise StageFailure(
                "clerk_api_failed",
                hint="Could not connect to Clerk with these keys. Verify the keys are correct.",
                detail=_detail(exc),
            ) from exc
        steps.append("Clerk API connection verified")

        frontend_api_url = frontend_api_url_from_publishable_key(publishable_key)
        if frontend_api_url:
            steps.append(f"Derived frontend API URL: {frontend_api_url}")
        else:
            steps.append("Warning: Could not derive frontend API URL from the publishable key")

        jwt_template_created = False
        try:
            jwt_template_created = identity.ensure_jwt_template(JWT_TEMPLATE_NAME)
        except ServiceError as exc:
            steps.append(f"Warning: JWT template creation failed: {exc}")
        else:
            if jwt_template_created:
                steps.append(f'Created JWT template "{JWT_TEMPLATE_NAME}"')
            else:
                steps.append(f'JWT template "{JWT_TEMPLATE_NAME}" already exists')

    return StageResult.ok(
        steps,
        {
            "keyType": validation.key_type,
            "frontendApiUrl": frontend_api_url,
            "jwtTemplateCreated": jwt_template_created,
        },
    )


# convex-deploy-functions


def run_convex_deploy_functions(
    ctx: ProvisioningContext,
    session: ProvisioningSession,
) -> StageResult:
    """Deploy backend functions to the production deployment."""
    steps = session.steps
    deploy_key = session.flag("deploy-key") or ""
    _require_deploy_key(deploy_key)

    try:
        result = ctx.backend().deploy(deploy_key)
    except BackendPlatformError as exc:
        raise StageFailure(
            "deploy_failed",
            hint="Convex deploy failed. Check that the deploy key is valid.",
            detail=_detail(exc),
        ) from exc

    prod_url, prod_site_url = production_urls_from_deploy_key(deploy_key)
    steps.append("Convex functions deployed to production")
    steps.append(f"Production URL: {prod_url}")
    steps.append(f"HTTP Actions URL: {prod_site_url}")
    if result.lines():
        steps.append(f"CLI output: {result.tail()}")
    return StageResult.ok(steps, {"prodUrl": prod_url, "prodSiteUrl": prod_site_url})


# prod-webhook


def run_prod_webhook(ctx: ProvisioningContext, session: ProvisioningSession) -> StageResult:
    """Create or reuse the production user-sync webhook."""
    steps = session.steps
    endpoint_url = webhook_endpoint_url(session.flag("convex-site-url") or "")
    with closing(ctx.identity_provider(session.flag("clerk-sk") or "")) as identity:
        outcome = bootstrap_webhook(identity, ctx.webhook_relay, endpoint_url, steps, production=True)
    fields = {"webhookSecret": outcome.webhook_secret, "endpointUrl": endpoint_url}
    if not outcome.configured:
        return StageResult.failure(
            "webhook_failed",
            steps,
            hint="Automatic webhook setup failed. Follow manualSteps to create it in the dashboard.",
            manual_steps=outcome.manual_steps,
            fields=fields,
        )
    return StageResult.ok(steps, fields)


# convex-prod-env


def run_convex_prod_env(ctx: ProvisioningContext, session: ProvisioningSession) -> StageResult:
    """Set production backend variables that were passed as flags."""
    deploy_key = session.flag("deploy-key") or ""
    _require_deploy_key(deploy_key)

    variables: dict[str, str] = {}
    for flag, key in (
        ("webhook-secret", "CLERK_WEBHOOK_SECRET"),
        ("frontend-api-url", "NEXT_PUBLIC_CLERK_FRONTEND_API_URL"),
        ("admin-email", "ADMIN_EMAIL"),
    ):
        value = session.flag(flag)
        if value is not None:
            variables[key] = value
    if not variables:
        raise StageFailure(
            "no_env_vars",
            hint="Pass at least one of --webhook-secret, --frontend-api-url or --admin-email",
        )

    backend = ctx.backend()
    outcome = propagate_env(
        session.steps,
        lambda key, value: backend.set_env(key, value, deploy_key=deploy_key),
        variables,
        label="Convex production env var",
    )
    return _propagation_result(session.steps, outcome)


# vercel-env-dev


def run_vercel_env_dev(ctx: ProvisioningContext, session: ProvisioningSession) -> StageResult:
    """Copy the local development settings into the hosting platform."""
    steps = session.steps
    store = ctx.store
    env_name = ctx.settings.relative(ctx.settings.env_file)

    variables: dict[str, str] = {}
    for key in DEV_HOSTING_KEYS:
        value = store.get_configured(key)
        if value is None:
            steps.append(f"Warning: {key} not found or is a placeholder in {env_name}")
            continue
        variables[key] = value
    for key in OPTIONAL_HOSTING_KEYS:
        value = store.get_configured(key)
        if value is not None:
            variables[key] = value

    if not variables:
        raise StageFailure(
            "no_env_vars",
            hint=f"No valid environment variables found in {env_name}. Run: setup_project.py init first",
        )

    outcome = propagate_env(steps, ctx.hosting().set_env, variables, label="Vercel env var")
    return _propagation_result(steps, outcome)


# vercel-env


def _stored_secret(ctx: ProvisioningContext, steps: StepLog, key: str) -> str:
    value, reused = ctx.store.ensure_secret(key)
    if reused:
        steps.append(f"Reused existing {key} from config store")
    else:
        steps.append(f"Generated new {key} and saved it to config store")
    return value


def run_vercel_env(ctx: ProvisioningContext, session: ProvisioningSession) -> StageResult:
    """Set the full production variable set on the hosting platform."""
    steps = session.steps
    csrf_secret = _stored_secret(ctx, steps, "CSRF_SECRET")
    session_secret = _stored_secret(ctx, steps, "SESSION_SECRET")

    variables: dict[str, str] = {
        "CONVEX_DEPLOY_KEY": session.flag("deploy-key") or "",
        "NEXT_PUBLIC_CLERK_PUBLISHABLE_KEY": session.flag("clerk-pk") or "",
        "CLERK_SECRET_KEY": session.flag("clerk-sk") or "",
        "NEXT_PUBLIC_CLERK_FRONTEND_API_URL": session.flag("frontend-api-url") or "",
        "NEXT_PUBLIC_SITE_NAME": session.flag("site-name") or "",
        "CSRF_SECRET": csrf_secret,
        "SESSION_SECRET": session_secret,
    }
    variables.update(dict.fromkeys(REDIRECT_KEYS, REDIRECT_PATH))

    convex_url = session.flag("convex-url")
    if convex_url:
        variables["NEXT_PUBLIC_CONVEX_URL"] = convex_url
    for key in OPTIONAL_HOSTING_KEYS:
        value = ctx.store.get_configured(key)
        if value is not None:
            variables[key] = value
    for flag, key in (
        ("google-client-id", "GOOGLE_CLIENT_ID"),
        ("google-client-secret", "GOOGLE_CLIENT_SECRET"),
    ):
        value = session.flag(flag)
        if value is not None:
            variables[key] = value

    outcome = propagate_env(steps, ctx.hosting().set_env, variables, label="Vercel env var")
    return _propagation_result(steps, outcome)


# vercel-deploy


def run_vercel_deploy(ctx: ProvisioningContext, session: ProvisioningSession) -> StageResult:
    """Trigger a production build and report the deployment URL."""
    steps = session.steps
    try:
        result = ctx.hosting().deploy_production()
    except ServiceError as exc:
        raise StageFailure(
            "deploy_failed",
            hint="Vercel deployment failed. Check the detail and try again.",
            detail=_detail(exc),
        ) from exc

    steps.append("Production deployment triggered")
    url = extract_deployment_url(result.lines()) or extract_deployment_url(
        result.stderr.splitlines()
    )
    if url:
        steps.append(f"Deployment URL: {url}")
    elif result.lines():
        steps.append(f"CLI output: {result.tail()}")
    return StageResult.ok(steps, {"url": url})


# write-summary


def run_write_summary(ctx: ProvisioningContext, session: ProvisioningSession) -> StageResult:
    """Render the deployment summary document from flags."""
    summary_path = ctx.settings.summary_path
    content = render_deployment_summary(facts_from_session(session), ctx.clock())
    try:
        write_deployment_summary(summary_path, content)
    except OSError as exc:
        raise StageFailure(
            "summary_write_failed",
            hint=f"Check that {summary_path.parent} is writable",
            detail=str(exc),
        ) from exc
    relative = ctx.settings.relative(summary_path)
    session.steps.append(f"Wrote deployment summary to {relative}")
    return StageResult.ok(session.steps, {"path": relative, "absolutePath": str(summary_path)})


# update-vercel-clerk-keys


def run_update_vercel_clerk_keys(
    ctx: ProvisioningContext,
    session: ProvisioningSession,
) -> StageResult:
    """Replace only the identity-provider variables on the hosting platform."""
    variables = {
        "NEXT_PUBLIC_CLERK_PUBLISHABLE_KEY": session.flag("clerk-pk") or "",
        "CLERK_SECRET_KEY": session.flag("clerk-sk") or "",
        "NEXT_PUBLIC_CLERK_FRONTEND_API_URL": session.flag("frontend-api-url") or "",
    }
    outcome = propagate_env(
        session.steps,
        ctx.hosting().set_env,
        variables,
        label="Vercel env var",
    )
    return _propagation_result(session.steps, outcome)


DEPLOY_STAGES = (
    StageSpec("check-tools", run_check_tools, locks_store=False, usage="deploy_project.py check-tools"),
    StageSpec(
        "github-setup",
        run_github_setup,
        required=("repo-name",),
        locks_store=False,
        usage='deploy_project.py github-setup --repo-name="my-project"',
    ),
    StageSpec(
        "convex-deploy-key",
        run_convex_deploy_key,
        locks_store=False,
        usage="deploy_project.py convex-deploy-key",
    ),
    StageSpec(
        "validate-keys",
        run_validate_keys,
        required=("clerk-pk", "clerk-sk"),
        locks_store=False,
        usage="deploy_project.py validate-keys --clerk-pk=pk_... --clerk-sk=sk_... "
        "[--deploy-key=prod:...|...] [--require-prod]",
    ),
    StageSpec(
        "convex-deploy-functions",
        run_convex_deploy_functions,
        required=("deploy-key",),
        locks_store=False,
        usage="deploy_project.py convex-deploy-functions --deploy-key=prod:...|...",
    ),
    StageSpec(
        "prod-webhook",
        run_prod_webhook,
        required=("clerk-sk", "convex-site-url"),
        locks_store=False,
        usage="deploy_project.py prod-webhook --clerk-sk=sk_live_... "
        "--convex-site-url=https://xxx.convex.site",
    ),
    StageSpec(
        "convex-prod-env",
        run_convex_prod_env,
        required=("deploy-key",),
        locks_store=False,
        usage="deploy_project.py convex-prod-env --deploy-key=prod:...|... "
        "[--webhook-secret=whsec_...] [--frontend-api-url=https://...] [--admin-email=...]",
    ),
    StageSpec(
        "vercel-env-dev",
        run_vercel_env_dev,
        locks_store=False,
        usage="deploy_project.py vercel-env-dev",
    ),
    StageSpec(
        "vercel-env",
        run_vercel_env,
        required=("clerk-pk", "clerk-sk", "deploy-key", "frontend-api-url", "site-name"),
        usage="deploy_project.py vercel-env --clerk-pk=... --clerk-sk=... --deploy-key=... "
        "--frontend-api-url=... --site-name=... [--convex-url=...]",
    ),
    StageSpec(
        "vercel-deploy",
        run_vercel_deploy,
        locks_store=False,
        usage="deploy_project.py vercel-deploy",
    ),
    StageSpec(
        "write-summary",
        run_write_summary,
        locks_store=False,
        usage="deploy_project.py write-summary [--vercel-url=...] [--completed-steps=a,b]",
    ),
    StageSpec(
        "update-vercel-clerk-keys",
        run_update_vercel_clerk_keys,
        required=("clerk-pk", "clerk-sk", "frontend-api-url"),
        locks_store=False,
        usage="deploy_project.py update-vercel-clerk-keys --clerk-pk=... --clerk-sk=... "
        "--frontend-api-url=...",
    ),
)


__all__ = [
    "DEPLOY_STAGES",
    "run_check_tools",
    "run_convex_deploy_functions",
    "run_convex_deploy_key",
    "run_convex_prod_env",
    "run_github_setup",
    "run_prod_webhook",
    "run_update_vercel_clerk_keys",
    "run_validate_keys",
    "run_vercel_deploy",
    "run_vercel_env",
    "run_vercel_env_dev",
    "run_write_summary",
]
