"""Built-in report templates used when no external template is installed."""

from __future__ import annotations

SUCCESS_TEMPLATE_NAME = "success-report.html"
ERROR_TEMPLATE_NAME = "error-report.html"

_STYLE = """
        body { font-family: Arial, sans-serif; line-height: 1.6; margin: 0; padding: 20px; background: #f5f5f5; }
        .container { max-width: 800px; margin: 0 auto; background: white; border-radius: 10px; overflow: hidden; }
        .header { color: white; padding: 30px; text-align: center; }
        .header h1 { margin: 0; font-size: 24px; }
        .status { padding: 15px; margin: 20px; border-radius: 5px; }
        .content { padding: 20px; }
        .section { margin-bottom: 30px; }
        .box { background: #f8f9fa; border: 1px solid #dee2e6; border-radius: 5px; padding: 15px; font-family: 'Courier New', monospace; white-space: pre-wrap; }
        .requirements { background: #e3f2fd; border-left: 4px solid #2196f3; padding: 15px; margin: 10px 0; }
        .footer { background: #f8f9fa; padding: 20px; text-align: center; color: #666; border-top: 1px solid #dee2e6; }
"""

_TASK_SECTION = """
            <div class="section">
                <h3>Task</h3>
                <p><strong>Description:</strong> {{ description }}</p>
                <p><strong>Type:</strong> {{ task_type }}</p>
                <p><strong>Project path:</strong> {{ project_path }}</p>
                {% if requirements %}
                <div class="requirements">
                    <strong>Requirements:</strong>
                    <ul>
                        {% for requirement in requirements %}
                        <li>{{ requirement }}</li>
                        {% endfor %}
                    </ul>
                </div>
                {% endif %}
            </div>
"""

DEFAULT_SUCCESS_TEMPLATE = (
    """<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <title>Task report - success</title>
    <style>"""
    + _STYLE
    + """        .header { background: #28a745; }
        .status { background: #d4edda; color: #155724; border-left: 4px solid #28a745; }
    </style>
</head>
<body>
    <div class="container">
        <div class="header">
            <div>✅</div>
            <h1>Task completed successfully</h1>
            <p>Task ID: {{ task_id }}</p>
        </div>
        <div class="status">
            <strong>Status:</strong> succeeded | <strong>Finished:</strong> {{ formatted_time }} | <strong>Elapsed:</strong> {{ duration }}
        </div>
        <div class="content">"""
    + _TASK_SECTION
    + """            <div class="section">
                <h3>Output</h3>
                <div class="box">{{ output or "No output" }}</div>
            </div>
        </div>
        <div class="footer">
            <p>Generated by task-courier</p>
            <p><small>Reply to this message or contact the administrator with questions.</small></p>
        </div>
    </div>
</body>
</html>
"""
)

DEFAULT_ERROR_TEMPLATE = (
    """<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <title>Task report - failure</title>
    <style>"""
    + _STYLE
    + """        .header { background: #dc3545; }
        .status { background: #f8d7da; color: #721c24; border-left: 4px solid #dc3545; }
        .box { border-color: #dc3545; color: #721c24; }
    </style>
</head>
<body>
    <div class="container">
        <div class="header">
            <div>❌</div>
            <h1>Task failed</h1>
            <p>Task ID: {{ task_id }}</p>
        </div>
        <div class="status">
            <strong>Status:</strong> failed | <strong>Finished:</strong> {{ formatted_time }} | <strong>Elapsed:</strong> {{ duration }}
        </div>
        <div class="content">"""
    + _TASK_SECTION
    + """            <div class="section">
                <h3>Error</h3>
                <div class="box">{{ error or "Unknown error" }}</div>
            </div>
            {% if output %}
            <div class="section">
                <h3>Partial output</h3>
                <div class="box">{{ output }}</div>
            </div>
            {% endif %}
        </div>
        <div class="footer">
            <p>Generated by task-courier</p>
            <p><small>Check the error, then resend the task e-mail or contact the administrator.</small></p>
        </div>
    </div>
</body>
</html>
"""
)

DEFAULT_TEMPLATES: dict[str, str] = {
    SUCCESS_TEMPLATE_NAME: DEFAULT_SUCCESS_TEMPLATE,
    ERROR_TEMPLATE_NAME: DEFAULT_ERROR_TEMPLATE,
}

TEST_MESSAGE_TEMPLATE = """<h2>task-courier delivery test</h2>
<p>This message checks that outbound mail delivery works.</p>
<p><strong>Sent at:</strong> {{ sent_at }}</p>
<p>If you received it, SMTP is configured correctly.</p>
<hr>
<p><small>task-courier</small></p>
"""
