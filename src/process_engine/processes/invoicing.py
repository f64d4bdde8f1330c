# invoicing.py
# Finished job to invoice and review request.

from process_engine.models import Condition, Invariant, Pattern, PatternStep, StoreAssertion, ToolContract

CONTRACTS = [
    ToolContract(
        tool_name="complete_job",
        process_id="quality_assurance",
        sub_step_id="customer_signoff",
        description="Completion is not reverted automatically",
        preconditions=[
            Condition(id="job_exists", description="Job must exist",
                      type="entity_exists", field="job_id", table="jobs"),
        ],
        postconditions=[
            Condition(id="job_completed", description="Job status changed to Completed",
                      type="field_equals", field="status", value="Completed"),
        ],
        db_assertions=[
            StoreAssertion(id="job_completed_in_store", description="Job is completed in the store",
                           table="jobs", query={"id": "{{args.job_id}}"},
                           expect={"field": "status", "operator": "==", "value": "Completed"}),
        ],
    ),
    ToolContract(
        tool_name="create_invoice",
        process_id="invoicing",
        sub_step_id="create_invoice",
        description="Create a new invoice for a customer",
        preconditions=[
            Condition(id="customer_exists", description="Customer must exist",
                      type="entity_exists", field="customer_id", table="customers"),
        ],
        postconditions=[
            Condition(id="invoice_created", description="Invoice was created",
                      type="entity_exists", field="id"),
            Condition(id="invoice_status_draft", description="New invoice status is Draft",
                      type="field_equals", field="status", value="Draft"),
        ],
        invariants=[
            Invariant(id="billed_to_requested_customer", description="Invoice belongs to the requested customer",
                      field="customer_id", value_from="{{args.customer_id}}"),
        ],
        db_assertions=[
            StoreAssertion(id="invoice_in_store", description="Invoice exists in the store",
                           table="invoices", query={"id": "{{result.id}}"}, expect={"count": 1}),
        ],
        rollback_tool="void_invoice",
        rollback_args={"invoice_id": "{{result.id}}"},
    ),
    ToolContract(
        tool_name="send_invoice",
        process_id="invoicing",
        sub_step_id="send_invoice",
        postconditions=[
            Condition(id="invoice_sent", description="Invoice status is Sent",
                      type="field_equals", field="status", value="Sent"),
        ],
    ),
]

PATTERNS = [
    Pattern(
        id="job_to_invoice",
        name="Complete Job and Create Invoice",
        description="Mark job complete, generate invoice, and send to customer",
        category="post-service",
        steps=[
            PatternStep(order=1, tool="complete_job", name="completed_job", signal="job_completed",
                        description="Mark job as completed",
                        args={"job_id": "{{input.job_id}}"}),
            PatternStep(order=2, tool="create_invoice", name="new_invoice", signal="invoice_created",
                        description="Create invoice from job",
                        args={
                            "job_id": "{{results.completed_job.id}}",
                            "customer_id": "{{results.completed_job.customer_id}}",
                        }),
            PatternStep(order=3, tool="send_invoice", name="invoice_sent", optional=True,
                        signal="invoice_sent",
                        description="Send invoice to customer",
                        args={"invoice_id": "{{results.new_invoice.id}}"}),
            PatternStep(order=4, tool="request_review", name="review_requested", optional=True,
                        signal="review_requested",
                        description="Request a review from the customer",
                        args={
                            "customer_id": "{{results.completed_job.customer_id}}",
                            "job_id": "{{results.completed_job.id}}",
                        }),
        ],
        preconditions=["Job must exist and be in progress"],
        postconditions=["Job status is Completed", "Invoice exists in Draft or Sent status"],
        success_metrics=["job_completed", "invoice_created", "invoice_sent", "review_requested"],
    ),
]
