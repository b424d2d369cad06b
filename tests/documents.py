"""Import documents shared by reconciler and orchestrator tests."""

# A custom registration flow whose form sub-flow holds two executions
REGISTRATION = {
    "realm": "test",
    "authenticationFlows": [
        {
            "alias": "my registration",
            "providerId": "basic-flow",
            "topLevel": True,
            "builtIn": False,
            "authenticationExecutions": [
                {
                    "authenticator": "registration-page-form",
                    "authenticatorFlow": True,
                    "flowAlias": "my registration form",
                    "requirement": "REQUIRED",
                    "priority": 0,
                }
            ],
        },
        {
            "alias": "my registration form",
            "providerId": "form-flow",
            "topLevel": False,
            "builtIn": False,
            "authenticationExecutions": [
                {
                    "authenticator": "registration-user-creation",
                    "authenticatorFlow": False,
                    "requirement": "REQUIRED",
                    "priority": 0,
                },
                {
                    "authenticator": "registration-profile-action",
                    "authenticatorFlow": False,
                    "requirement": "DISABLED",
                    "priority": 1,
                },
            ],
        },
    ],
}


def form_executions(document: dict) -> list[dict]:
    """Executions of the registration form sub-flow of ``document``."""
    return document["authenticationFlows"][1]["authenticationExecutions"]
