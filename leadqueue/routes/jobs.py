"""
Job routes — launch batch jobs and read their runs.
"""
from flask import Blueprint, request, jsonify

from leadqueue.pipeline.manager import JOB_REGISTRY, launch_job, get_job_status, list_recent_jobs

bp = Blueprint('jobs', __name__)


@bp.route('/api/jobs', methods=['POST'])
def create_job():
    """Queue a batch job."""
    try:
        data = request.json or {}
        job = data.get('job', '')
        if job not in JOB_REGISTRY:
            return jsonify({'error': f'Unknown job: {job}', 'available': sorted(JOB_REGISTRY)}), 400
        run = launch_job(job, data.get('params') or {})
        return jsonify(run.to_dict()), 202
    except Exception as e:
        return jsonify({'error': str(e)}), 500


@bp.route('/api/jobs')
def list_jobs():
    try:
        limit = request.args.get('limit', 50, type=int)
        return jsonify(list_recent_jobs(limit=limit, job=request.args.get('job')))
    except Exception as e:
        return jsonify({'error': str(e)}), 500


@bp.route('/api/jobs/<job_id>')
def get_job(job_id):
    status = get_job_status(job_id)
    if not status:
        return jsonify({'error': 'Job not found'}), 404
    return jsonify(status)
