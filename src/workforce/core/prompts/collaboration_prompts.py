"""
Collaboration Prompts - Tool Syntax, Task Phases and Reviews

Prompt text shared by the agentic loop and the delegation state machine:
- TOOL_SCHEMA_PROMPT: full tool-call syntax and tool list (first iteration)
- TOOL_FORMAT_REMINDER: short syntax reminder (later iterations)
- NEXT_STEP_DIRECTIVE: instruction after tool results were appended
- PLANNING_TASK_PROMPT / EXECUTION_TASK_PROMPT: the two task phases
- SUPERVISOR_REVIEW_PROMPT: delegator judges a finished task
- PLAN_REVIEW_PROMPT: reviewer approves or rejects a dev plan

Usage:
    from workforce.core.prompts.collaboration_prompts import TOOL_SCHEMA_PROMPT

    text = TOOL_SCHEMA_PROMPT.format(tools=executor.describe_tools())
"""

TOOL_RESULTS_PREFIX = "Tool results:"
TOOL_CALL_ERROR_PREFIX = "Tool call error:"
ITERATION_LIMIT_SENTINEL = "[reached iteration limit]"
CANCELLED_NOTICE = "[task cancelled]"

TOOL_SCHEMA_PROMPT = """
## Tools

You can act by writing tool calls in your reply, one block per call:

<tool_call>
<name>tool_name</name>
<arguments>
<param_name>value</param_name>
</arguments>
</tool_call>

Rules:
- Use only the tool names listed below, with flat arguments (no nesting).
- After your tool calls, stop and wait for the results.
- When you have everything you need, answer in plain text without tool calls.

Available tools:
{tools}
"""

TOOL_FORMAT_REMINDER = (
    "(Reminder: call tools with <tool_call><name>...</name><arguments>...</arguments>"
    "</tool_call>, or answer in plain text when you are done.)"
)

NEXT_STEP_DIRECTIVE = (
    "Use the tool results above to continue. Do not call {tools} again with the same "
    "arguments. If the work is done, give your final answer now."
)

TOOL_CALL_ERROR_TEMPLATE = (
    TOOL_CALL_ERROR_PREFIX
    + " some of your tool calls could not be read and were not executed:\n{issues}\n"
    "Write each call as one complete <tool_call> block."
)

MESSAGE_CONTEXT_PREAMBLE = """[Message from {from_name} ({from_actor})]
{history_section}
{message}"""

SYSTEM_SENDER_NAME = "System"

PLANNING_TASK_PROMPT = """[Work assignment from {from_name} - planning phase]

Task ({task_id}):
{description}
{feedback_section}
Before you may change anything you must get a development plan approved.
Investigate with the read-only tools available to you, then submit your plan
with submit_dev_plan(task_id="{task_id}", content="..."). The plan should
cover the approach, affected areas, risks and an effort estimate.
Once the plan is approved, all tools are unlocked and you continue the work."""

REJECTION_FEEDBACK_SECTION = """
Your previous plan was rejected. Reviewer feedback:
{feedback}
Revise the plan accordingly and submit it again.
"""

EXECUTION_TASK_PROMPT = """[Work assignment from {from_name}]

Task ({task_id}):
{description}
{plan_section}
This is a work assignment, not a chat. Start immediately, use tools to do the
actual work, and finish with a report of what you did, what you produced and
any problems you ran into."""

APPROVED_PLAN_SECTION = """
Approved development plan (follow it):
{content}
{comment}"""

SUPERVISOR_REVIEW_PROMPT = """[System notice - task completion report]

{assignee_name} ({assignee}) finished the task you delegated.

Task ({task_id}):
{description}

Report from {assignee_name}:
{result}

Review the result now and act:
1. If the work meets the requirements, report it with
   notify_boss(message="...") including who did what and your quality assessment.
2. If it does not, send it back with
   delegate_task(target_agent="{assignee}", task_description="what must change").

You must call one of these tools. Describing the action in text does nothing."""

PLAN_REVIEW_PROMPT = """[System notice - development plan awaiting approval]

{author_name} {action} a development plan for task {task_id}.{revision_note}
Plan id: {plan_id}

Plan:
{content}

Decide now:
1. Sound plan: approve_dev_plan(plan_id="{plan_id}", comment="optional note")
2. Needs changes: reject_dev_plan(plan_id="{plan_id}", feedback="what to change")

Check that the approach is reasonable, the scope is under control, the
estimate is realistic and no important risk is missing."""

REWORK_DESCRIPTION = """[review rejected by {reviewer_name}]

Your previous result was sent back. Feedback:
{feedback}

Redo the task based on the feedback. Original task:
{description}"""

REVIEW_REJECT_KEYWORDS = (
    "redo",
    "rework",
    "does not meet",
    "doesn't meet",
    "incorrect",
    "needs changes",
    "needs to be changed",
    "reject",
    "send back",
    "sent back",
    "not acceptable",
    "重新",
    "返工",
    "不符合",
    "执行有误",
    "有误",
    "不正确",
    "需要修改",
    "退回",
    "打回",
    "重做",
    "不合格",
    "需要改",
)
