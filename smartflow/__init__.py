"""SmartFlow: multi-step document intake flows with AI-generated steps.

Public entry points:
    from smartflow.flow import FlowEngine
    from smartflow.core.models import TemplateSpec
    from smartflow.config import configure, SmartFlowConfig
"""

__version__ = "0.1.0"
