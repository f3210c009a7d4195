"""Reliability pipeline.

Public surface:
    ReliabilityPipeline  — orchestrator.py: intent → validated workflow, never fails.
    DeploymentRunner     — deployment.py: deploy + feedback + one redeploy.
    TemplateDiscovery    — discovery.py: cache-aware ranking with fallback floor.
    FeasibilityChecker   — feasibility.py: 3-stage short-circuit gate.
    AutoFixEngine        — autofix.py: deterministic repair table.
    ErrorFeedbackLoop    — feedback.py: failure patterns + layered repairs.
    GuaranteedFallback   — fallback.py: static pre-verified workflow.
    WorkflowGraph        — graph_ir.py: immutable workflow graph + engine JSON codec.

Import from the submodules directly; this package does not re-export them.
"""
