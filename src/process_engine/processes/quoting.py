# quoting.py
# Approved quote to scheduled, assigned job. Also owns the scheduling,
# dispatching and job-confirmation contracts reused by site assessment.

from process_engine.models import Condition, Invariant, Pattern, PatternStep, StoreAssertion, ToolContract

CONTRACTS = [
    ToolContract(
        tool_name="get_quote",
        process_id="quoting",
        sub_step_id="quote_approval",
        description="Fetch a quote; read-only",
        side_effects=False,
        preconditions=[
            Condition(id="quote_id_required", description="Quote id is required",
                      type="field_not_null", field="quote_id"),
        ],
        postconditions=[
            Condition(id="quote_approved", description="Quote must be approved",
                      type="field_equals", field="status", value="Approved"),
        ],
        recovery_hints={"quote_approved": "The quote must be approved before it can become a job."},
    ),
    ToolContract(
        tool_name="create_job",
        process_id="scheduling",
        sub_step_id="create_job",
        description="Create a job from a quote",
        preconditions=[
            Condition(id="customer_exists", description="Customer must exist",
                      type="entity_exists", field="customer_id", table="customers"),
            Condition(id="title_required", description="Job title is required",
                      type="field_not_null", field="title"),
        ],
        postconditions=[
            Condition(id="job_created", description="Job was created",
                      type="entity_exists", field="id", table="jobs"),
            Condition(id="job_pending", description="New job starts as Pending",
                      type="field_equals", field="status", value="Pending"),
        ],
        db_assertions=[
            StoreAssertion(id="job_in_store", description="Job exists in the store",
                           table="jobs", query={"id": "{{result.id}}"}, expect={"count": 1}),
        ],
        rollback_tool="delete_job",
        rollback_args={"job_id": "{{result.id}}"},
    ),
    ToolContract(
        tool_name="schedule_job",
        process_id="scheduling",
        sub_step_id="schedule_appointment",
        description="Schedule a job for a specific date/time",
        preconditions=[
            Condition(id="job_exists", description="Job must exist",
                      type="entity_exists", field="job_id", table="jobs"),
            Condition(id="start_required", description="Start time is required",
                      type="field_not_null", field="starts_at"),
        ],
        postconditions=[
            Condition(id="job_scheduled", description="Job has starts_at set",
                      type="field_not_null", field="starts_at"),
            Condition(id="job_status_scheduled", description="Job status is Scheduled",
                      type="field_equals", field="status", value="Scheduled"),
        ],
        invariants=[
            Invariant(id="customer_unchanged", description="Scheduling never moves the job to another customer",
                      table="jobs", key_from="{{args.job_id}}", field="customer_id"),
        ],
        db_assertions=[
            StoreAssertion(id="job_scheduled_in_store", description="Job is scheduled in the store",
                           table="jobs", query={"id": "{{args.job_id}}"},
                           expect={"field": "starts_at", "operator": "not_null"}),
        ],
        rollback_tool="unschedule_job",
        rollback_args={"job_id": "{{args.job_id}}"},
        recovery_hints={"start_required": "Please choose a date and time for the job."},
    ),
    ToolContract(
        tool_name="assign_job",
        process_id="dispatching",
        sub_step_id="assign_technician",
        description="Assign a team member to a job",
        preconditions=[
            Condition(id="job_exists", description="Job must exist",
                      type="entity_exists", field="job_id", table="jobs"),
            Condition(id="team_member_exists", description="Team member must exist",
                      type="entity_exists", field="user_id", table="team_members"),
        ],
        postconditions=[
            Condition(id="assignment_created", description="Job is assigned to the requested member",
                      type="field_equals", field="assigned_to", value_from="{{args.user_id}}"),
        ],
        rollback_tool="unassign_job",
        rollback_args={"job_id": "{{args.job_id}}"},
    ),
    ToolContract(
        tool_name="send_job_confirmation",
        process_id="customer_communication",
        sub_step_id="communicate_details",
        description="Confirmations cannot be recalled",
        preconditions=[
            Condition(id="job_exists", description="Job must exist",
                      type="entity_exists", field="job_id", table="jobs"),
        ],
        postconditions=[
            Condition(id="confirmation_sent", description="Confirmation was sent",
                      type="field_equals", field="status", value="sent"),
        ],
        db_assertions=[
            StoreAssertion(id="mail_send_logged", description="Email send was logged",
                           table="emails", query={"job_id": "{{args.job_id}}"}, expect={"count": 1}),
        ],
    ),
]

PATTERNS = [
    Pattern(
        id="quote_to_job",
        name="Convert Quote to Scheduled Job",
        description="End-to-end workflow from approved quote to scheduled, assigned job",
        category="pre-service",
        steps=[
            PatternStep(order=1, tool="get_quote", name="quote",
                        description="Fetch approved quote details",
                        args={"quote_id": "{{input.quote_id}}"}),
            PatternStep(order=2, tool="create_job", name="new_job", signal="job_created",
                        description="Create job from quote",
                        args={
                            "quote_id": "{{results.quote.id}}",
                            "customer_id": "{{results.quote.customer_id}}",
                            "title": "{{results.quote.title}}",
                            "address": "{{results.quote.address}}",
                        }),
            PatternStep(order=3, tool="schedule_job", name="scheduled_job", signal="job_scheduled",
                        description="Schedule the job for a specific date/time",
                        args={
                            "job_id": "{{results.new_job.id}}",
                            "starts_at": "{{input.starts_at}}",
                            "ends_at": "{{input.ends_at}}",
                        }),
            PatternStep(order=4, tool="assign_job", name="assignment", optional=True,
                        signal="team_assigned",
                        description="Assign team member to job",
                        args={"job_id": "{{results.new_job.id}}", "user_id": "{{input.assigned_to}}"}),
            PatternStep(order=5, tool="send_job_confirmation", name="confirmation", optional=True,
                        signal="customer_notified",
                        description="Send confirmation email to customer",
                        args={"job_id": "{{results.new_job.id}}"}),
        ],
        preconditions=["Quote must exist and be in Approved status", "Customer must exist"],
        postconditions=["Job exists with status Scheduled", "Job has starts_at set"],
        success_metrics=["job_created", "job_scheduled", "team_assigned", "customer_notified"],
    ),
]
