# site_assessment.py
# Assessment request through to a scheduled, assigned assessment job.
# Customer, request and job contracts come from the other process modules.

from process_engine.models import Condition, Pattern, PatternStep, ToolContract

CONTRACTS = [
    ToolContract(
        tool_name="create_assessment_job",
        process_id="site_assessment",
        sub_step_id="schedule_assessment",
        description="Create and schedule an assessment job",
        preconditions=[
            Condition(id="customer_exists", description="Customer must exist",
                      type="entity_exists", field="customer_id", table="customers"),
            Condition(id="address_required", description="Address is required for a site assessment",
                      type="field_not_null", field="address"),
        ],
        postconditions=[
            Condition(id="assessment_created", description="Assessment job was created",
                      type="entity_exists", field="id", table="jobs"),
            Condition(id="is_assessment", description="Job is flagged as an assessment",
                      type="field_equals", field="is_assessment", value=True),
        ],
        rollback_tool="delete_job",
        rollback_args={"job_id": "{{result.id}}"},
        recovery_hints={"address_required": "Please provide the site address for the assessment."},
    ),
]

_CUSTOMER_ID = "{{results.customer.id || results.existing_customer.id}}"

PATTERNS = [
    Pattern(
        id="complete_site_assessment",
        name="Complete Site Assessment",
        description="End-to-end site assessment workflow from request to scheduled visit",
        category="pre-service",
        steps=[
            PatternStep(order=1, tool="search_customers", name="existing_customer",
                        description="Check for existing customer record",
                        args={"email": "{{input.email}}", "phone": "{{input.phone}}"}),
            PatternStep(order=2, tool="create_customer", name="customer", signal="customer_identified",
                        description="Create customer if not found",
                        skip_if="{{results.existing_customer.found}}",
                        args={
                            "name": "{{input.name}}",
                            "email": "{{input.email}}",
                            "phone": "{{input.phone}}",
                            "address": "{{input.address}}",
                        }),
            PatternStep(order=3, tool="create_request", name="request", optional=True,
                        signal="request_logged",
                        description="Log assessment request in system",
                        args={
                            "customer_id": _CUSTOMER_ID,
                            "title": '{{input.request_title || "Site Assessment"}}',
                            "description": "{{input.request_description}}",
                        }),
            PatternStep(order=4, tool="check_team_availability", name="availability",
                        description="Check assessor availability",
                        args={
                            "business_id": "{{context.business_id}}",
                            "preferred_date": "{{input.preferred_date}}",
                        }),
            PatternStep(order=5, tool="create_assessment_job", name="assessment_job",
                        signal="assessment_scheduled",
                        description="Create assessment job with scheduling",
                        args={
                            "customer_id": _CUSTOMER_ID,
                            "address": "{{input.address}}",
                            "starts_at": "{{input.starts_at}}",
                            "title": '{{input.title || "Site Assessment"}}',
                            "notes": "{{input.access_instructions}}",
                        }),
            PatternStep(order=6, tool="assign_job", name="assignment", optional=True,
                        signal="assessor_assigned",
                        description="Assign assessor to job",
                        args={
                            "job_id": "{{results.assessment_job.id}}",
                            "user_id": "{{input.assigned_to || results.availability.best_match}}",
                        }),
            PatternStep(order=7, tool="send_job_confirmation", name="confirmation", optional=True,
                        retry_on_fail=True, signal="customer_notified",
                        description="Send confirmation to customer",
                        args={"job_id": "{{results.assessment_job.id}}"}),
        ],
        preconditions=[
            "Input must contain a customer identifier (name, email, or phone)",
            "Address is required for site assessment",
        ],
        postconditions=[
            "Assessment job exists with is_assessment=true",
            "Customer has been notified if email provided",
        ],
        success_metrics=[
            "customer_identified",
            "request_logged",
            "assessment_scheduled",
            "assessor_assigned",
            "customer_notified",
        ],
    ),
]
