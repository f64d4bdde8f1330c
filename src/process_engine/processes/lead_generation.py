# lead_generation.py
# Lead capture: find or create the customer, score the lead, log the
# request, assign it and say hello.

from process_engine.models import Condition, Pattern, PatternStep, StoreAssertion, ToolContract

PROCESS_ID = "lead_generation"

CONTRACTS = [
    ToolContract(
        tool_name="search_customers",
        process_id=PROCESS_ID,
        sub_step_id="receive_inquiry",
        description="Duplicate check by email or phone",
        side_effects=False,
        postconditions=[
            Condition(id="search_answered", description="Search reports found/not found",
                      type="field_not_null", field="found"),
        ],
    ),
    ToolContract(
        tool_name="create_customer",
        process_id=PROCESS_ID,
        sub_step_id="receive_inquiry",
        description="Create a customer record for a new lead",
        preconditions=[
            Condition(id="name_required", description="Name is required",
                      type="field_not_null", field="name"),
        ],
        postconditions=[
            Condition(id="customer_created", description="Customer should be created",
                      type="entity_exists", field="id", table="customers"),
            Condition(id="customer_is_lead", description="New customer starts as a lead",
                      type="field_equals", field="status", value="Lead"),
        ],
        db_assertions=[
            StoreAssertion(id="customer_in_store", description="Exactly one customer row",
                           table="customers", query={"id": "{{result.id}}"}, expect={"count": 1}),
        ],
        rollback_tool="delete_customer",
        rollback_args={"customer_id": "{{result.id}}"},
        recovery_hints={
            "name_required": "Please provide the customer name.",
            "customer_created": "Failed to create customer. Please check the details and try again.",
        },
    ),
    ToolContract(
        tool_name="score_lead",
        process_id=PROCESS_ID,
        sub_step_id="qualify_lead",
        description="Score lead quality from data completeness",
        preconditions=[
            Condition(id="customer_id_required", description="Customer must be identified",
                      type="field_not_null", field="customer_id"),
        ],
        postconditions=[
            Condition(id="lead_scored", description="Lead score is set",
                      type="field_not_null", field="lead_score"),
        ],
        db_assertions=[
            StoreAssertion(id="score_persisted", description="Score written to the customer",
                           table="customers", query={"id": "{{args.customer_id}}"},
                           expect={"field": "lead_score", "operator": "not_null"}),
        ],
        rollback_tool="reset_lead_score",
        rollback_args={"customer_id": "{{args.customer_id}}"},
    ),
    ToolContract(
        tool_name="create_request",
        process_id=PROCESS_ID,
        sub_step_id="enter_lead",
        description="Log the initial service request",
        preconditions=[
            Condition(id="customer_required", description="Customer must exist",
                      type="entity_exists", field="customer_id", table="customers"),
            Condition(id="title_required", description="Request title is required",
                      type="field_not_null", field="title"),
        ],
        postconditions=[
            Condition(id="request_created", description="Request should be created",
                      type="entity_exists", field="id", table="requests"),
        ],
        rollback_tool="delete_request",
        rollback_args={"request_id": "{{result.id}}"},
        recovery_hints={
            "customer_required": "Please create or select a customer first.",
            "title_required": "Please provide a title for the service request.",
        },
    ),
    ToolContract(
        tool_name="auto_assign_lead",
        process_id=PROCESS_ID,
        sub_step_id="assign_lead",
        preconditions=[
            Condition(id="request_required", description="Request must exist",
                      type="field_not_null", field="request_id"),
        ],
        postconditions=[
            Condition(id="lead_assigned", description="Request has an assignee",
                      type="field_not_null", field="assigned_to"),
        ],
        rollback_tool="unassign_lead",
        rollback_args={"request_id": "{{args.request_id}}"},
    ),
    ToolContract(
        tool_name="send_email",
        process_id=PROCESS_ID,
        sub_step_id="initial_contact",
        description="Emails cannot be unsent",
        preconditions=[
            Condition(id="recipient_required", description="Recipient customer is required",
                      type="field_not_null", field="customer_id"),
        ],
        postconditions=[
            Condition(id="email_sent", description="Email should be recorded as sent",
                      type="field_equals", field="status", value="sent"),
        ],
    ),
]

PATTERNS = [
    Pattern(
        id="complete_lead_generation",
        name="Complete Lead Generation",
        description="End-to-end lead capture, qualification and initial contact",
        category="pre-service",
        steps=[
            PatternStep(order=1, tool="search_customers", optional=True,
                        description="Check for an existing customer",
                        args={"email": "{{input.email}}", "phone": "{{input.phone}}"}),
            PatternStep(order=2, tool="create_customer",
                        description="Create the customer if no duplicate was found",
                        skip_if="{{results.search_customers.found}}",
                        signal="customer_created",
                        args={
                            "name": "{{input.name}}",
                            "email": "{{input.email}}",
                            "phone": "{{input.phone}}",
                            "address": "{{input.address}}",
                            "lead_source": "{{input.lead_source}}",
                        }),
            PatternStep(order=3, tool="score_lead", signal="lead_scored",
                        description="Score the lead",
                        args={"customer_id": "{{results.create_customer.id || results.search_customers.id}}"}),
            PatternStep(order=4, tool="create_request", optional=True, signal="request_created",
                        description="Log the initial service request",
                        args={
                            "customer_id": "{{results.create_customer.id || results.search_customers.id}}",
                            "title": "{{input.request_title}}",
                            "description": "{{input.request_description}}",
                        }),
            PatternStep(order=5, tool="check_team_availability",
                        description="Find available team members",
                        args={"business_id": "{{context.business_id}}"}),
            PatternStep(order=6, tool="auto_assign_lead", optional=True, signal="lead_assigned",
                        description="Assign the request to an available member",
                        skip_if="{{!results.create_request.id}}",
                        args={
                            "request_id": "{{results.create_request.id}}",
                            "available_members": "{{results.check_team_availability.members}}",
                        }),
            PatternStep(order=7, tool="send_email", optional=True, retry_on_fail=True,
                        signal="welcome_email_sent",
                        description="Send the welcome email",
                        args={
                            "customer_id": "{{results.create_customer.id || results.search_customers.id}}",
                            "template": "welcome",
                        }),
        ],
        preconditions=["Input contains a name and an email or phone"],
        postconditions=[
            "Customer record exists with a lead_score",
            "If a request was created it has an assignee",
        ],
        success_metrics=[
            "customer_created", "lead_scored", "request_created", "lead_assigned", "welcome_email_sent",
        ],
    ),
]
