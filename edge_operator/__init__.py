"""Edge Operator: reconciles EdgeDeployment intents into Deployments."""

__version__ = "0.1.0"
