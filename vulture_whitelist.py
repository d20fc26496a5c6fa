# Vulture whitelist file
# This file contains false positives that vulture incorrectly flags as dead code.
# These are typically framework-registered functions, Pydantic fields, pytest fixtures, etc.
#
# Usage: python3 -m vulture server vulture_whitelist.py

# =============================================================================
# FastAPI Route Handlers (registered via @router.get/post decorators)
# =============================================================================

health_check  # routes.py - GET /healthz
readiness_check  # routes.py - GET /readyz
get_worker_diagnostics  # routes.py - GET /api/v1/diagnostics/workers
reconcile_deployment  # routes.py - POST /api/v1/deployments/{deployment_name}/reconcile

# =============================================================================
# FastAPI lifespan (passed to the FastAPI constructor)
# =============================================================================

lifespan  # main.py

# =============================================================================
# Pydantic Model Fields (accessed via JSON serialization/deserialization)
# =============================================================================

_.created_at  # Event model field
_.timestamp  # HealthResponse model field
_.instance_id  # CurrentStateEntry / StateFailureEntry model field
_.vm_cid  # CurrentStateEntry / StateFailureEntry model field
_.vms_marked_for_deletion  # ReconcileResponse model field
_.json_schema_extra  # model_config examples

# =============================================================================
# Pydantic Settings Config (read by pydantic-settings)
# =============================================================================

_.env_file  # Settings.Config
_.case_sensitive  # Settings.Config

# =============================================================================
# Protocol members (structural typing)
# =============================================================================

_.update_persistent_disk  # RecordStore protocol
_.mark_vm_for_deletion  # DeletionScheduler protocol

# =============================================================================
# Pytest Fixtures (injected by name)
# =============================================================================

anyio_backend  # conftest.py
restore_config_validation  # test_config_validation.py
wired  # test_routes.py
