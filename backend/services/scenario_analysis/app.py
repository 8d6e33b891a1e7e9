from contextlib import asynccontextmanager
from typing import Optional, Dict, Any

from fastapi import FastAPI, HTTPException, status, Query, Body
from fastapi.middleware.cors import CORSMiddleware

from shared.logging_config import setup_logging
from shared.health import create_health_response
from shared.http_errors import create_http_exception
from shared.models.analysis import AnalysisState
from shared.models.exceptions import ScenarioAnalysisException, ServiceBusyException
from .models import (
    ScenarioSpec, EstimationRequest, OptimizationRequest, SubmitAnalysisRequest,
    SubmitAnalysisResponse, ESTIMATION_PRIORS, parse_payload,
)
from .factors import FactorCategory, default_catalogue
from .database import create_job_store
from .publisher import create_status_publisher
from .orchestrator import JobOrchestrator, build_orchestrator
from .config import settings

# Setup logging
logger = setup_logging(settings.service_name, settings.log_level)

# Global instances, created on startup
orchestrator: Optional[JobOrchestrator] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager"""
    global orchestrator

    # Startup
    logger.info("Starting Scenario Analysis Service...")

    try:
        job_store = create_job_store(settings)
        publisher = create_status_publisher(settings)
        orchestrator = build_orchestrator(settings, job_store=job_store, publisher=publisher)
        await orchestrator.start()

        logger.info("Scenario Analysis Service started successfully")

        yield

    except Exception as e:
        logger.error(f"Failed to start Scenario Analysis Service: {e}")
        raise
    finally:
        # Shutdown
        logger.info("Shutting down Scenario Analysis Service...")
        if orchestrator is not None:
            await orchestrator.stop()
        orchestrator = None
        logger.info("Scenario Analysis Service shutdown complete")


# Create FastAPI app
app = FastAPI(
    title="Scenario Analysis Service",
    description="Microservice for environmental impact, estimation and optimization analysis of production scenarios",
    version=settings.version,
    lifespan=lifespan
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
)


def _orchestrator() -> JobOrchestrator:
    if orchestrator is None:
        raise ServiceBusyException("Scenario analysis service is not ready")
    return orchestrator


def _internal_error(action: str, e: Exception) -> HTTPException:
    logger.error(f"Error {action}: {e}")
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={"error": "internal_error", "message": "Internal server error"}
    )


@app.get("/")
async def root():
    return {
        "service": settings.service_name,
        "version": settings.version,
        "status": "running",
        "docs": "/docs"
    }


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    additional_checks = {}

    if orchestrator is not None:
        additional_checks["workers_running"] = orchestrator.is_running()

        if settings.kafka_health_check_enabled and settings.kafka_enabled:
            additional_checks["kafka_connected"] = orchestrator.publisher.is_running()

        if settings.database_health_check_enabled:
            additional_checks["database_connected"] = orchestrator.job_store.health_check()
    else:
        additional_checks["workers_running"] = False

    return create_health_response(
        settings.service_name,
        settings.version,
        additional_checks,
        critical=("workers_running", "database_connected"),
    )


@app.get("/metadata")
async def get_metadata():
    """Get service metadata including model settings and job states"""
    return {
        "service": settings.service_name,
        "version": settings.version,
        "job_states": [state.value for state in AnalysisState],
        "estimable_fields": list(ESTIMATION_PRIORS.keys()),
        "factor_categories": [category.value for category in FactorCategory],
        "impact_model": {
            "seed": settings.impact_seed,
            "variation": settings.impact_variation,
            "allow_net_negative_carbon": settings.allow_net_negative_carbon,
        },
        "optimization_candidates": settings.optimization_candidates,
        "workers": orchestrator.stats() if orchestrator is not None else None,
        "job_store": settings.job_store_backend,
        "kafka_enabled": settings.kafka_enabled,
    }


@app.post("/scenarios/{scenario_id}/analysis", status_code=status.HTTP_202_ACCEPTED)
async def submit_analysis(scenario_id: str, payload: Dict[str, Any] = Body(...)):
    """Start an asynchronous analysis job for a scenario"""
    try:
        request = parse_payload(SubmitAnalysisRequest, payload)
        job_id = await _orchestrator().submit(scenario_id, request.scenario, request.estimate_fields)
        analysis = _orchestrator().get_job(job_id)

        response = SubmitAnalysisResponse(job_id=job_id, scenario_id=scenario_id, state=analysis.state)
        return response.model_dump(mode="json", by_alias=True)

    except ScenarioAnalysisException as e:
        raise create_http_exception(e)
    except Exception as e:
        raise _internal_error(f"submitting analysis for scenario {scenario_id}", e)


@app.get("/scenarios/{scenario_id}/analysis")
async def get_analysis_status(scenario_id: str):
    """Get the latest analysis status of a scenario"""
    try:
        analysis = _orchestrator().get_status(scenario_id)
        return analysis.model_dump(mode="json", by_alias=True)

    except ScenarioAnalysisException as e:
        raise create_http_exception(e)
    except Exception as e:
        raise _internal_error(f"retrieving analysis for scenario {scenario_id}", e)


@app.delete("/scenarios/{scenario_id}/analysis")
async def cancel_analysis(scenario_id: str):
    """Request cancellation of the scenario's active analysis job"""
    try:
        analysis = await _orchestrator().cancel(scenario_id)
        return {
            "message": "Cancellation requested",
            "analysis": analysis.model_dump(mode="json", by_alias=True),
        }

    except ScenarioAnalysisException as e:
        raise create_http_exception(e)
    except Exception as e:
        raise _internal_error(f"cancelling analysis for scenario {scenario_id}", e)


@app.get("/jobs/{job_id}")
async def get_job(job_id: str):
    """Get an analysis job by ID"""
    try:
        analysis = _orchestrator().get_job(job_id)
        return analysis.model_dump(mode="json", by_alias=True)

    except ScenarioAnalysisException as e:
        raise create_http_exception(e)
    except Exception as e:
        raise _internal_error(f"retrieving job {job_id}", e)


@app.get("/jobs")
async def list_jobs(
    scenario_id: Optional[str] = Query(default=None, alias="scenarioId", description="Restrict to one scenario"),
    limit: int = Query(default=10, ge=1, le=100, description="Number of jobs to retrieve")
):
    """Get recent analysis jobs, newest first"""
    try:
        jobs = _orchestrator().list_jobs(scenario_id=scenario_id, limit=limit)
        return {
            "total_jobs": len(jobs),
            "jobs": [job.model_dump(mode="json", by_alias=True) for job in jobs]
        }

    except ScenarioAnalysisException as e:
        raise create_http_exception(e)
    except Exception as e:
        raise _internal_error("listing analysis jobs", e)


@app.post("/calculate")
async def calculate_impact(
    payload: Dict[str, Any] = Body(...),
    seed: Optional[int] = Query(default=None, description="Override the impact model seed")
):
    """Compute the impact metrics of a scenario synchronously"""
    try:
        scenario = ScenarioSpec.from_payload(payload)
        impact = _orchestrator().pipeline.impact_model.compute(scenario, seed=seed)
        return impact.model_dump(mode="json", by_alias=True)

    except ScenarioAnalysisException as e:
        raise create_http_exception(e)
    except Exception as e:
        raise _internal_error("calculating impact", e)


@app.post("/estimate")
async def estimate_missing(payload: Dict[str, Any] = Body(...)):
    """Estimate fields missing from a scenario"""
    try:
        request = parse_payload(EstimationRequest, payload)
        estimates = _orchestrator().pipeline.estimator.estimate_missing(request)
        return {
            "estimates": [estimate.model_dump(mode="json", by_alias=True) for estimate in estimates]
        }

    except ScenarioAnalysisException as e:
        raise create_http_exception(e)
    except Exception as e:
        raise _internal_error("estimating missing fields", e)


@app.post("/optimize")
async def optimize(payload: Dict[str, Any] = Body(...)):
    """Rank optimized variants of a baseline scenario"""
    try:
        request = parse_payload(OptimizationRequest, payload)
        candidates = _orchestrator().pipeline.optimizer.search(request)
        return {
            "candidates": [candidate.model_dump(mode="json", by_alias=True) for candidate in candidates]
        }

    except ScenarioAnalysisException as e:
        raise create_http_exception(e)
    except Exception as e:
        raise _internal_error("optimizing scenario", e)


@app.get("/factors")
async def list_factors(
    query: Optional[str] = Query(default=None, description="Substring of the factor name, category or source"),
    category: Optional[str] = Query(default=None, description="Exact factor category"),
    region: Optional[str] = Query(default=None, description="Substring of the factor region"),
    min_confidence: Optional[float] = Query(default=None, alias="minConfidence", ge=0, le=1),
    limit: Optional[int] = Query(default=None, ge=1, le=100, description="Number of factors to retrieve")
):
    """List or search the emission factor catalogue"""
    try:
        factors = default_catalogue.search(
            query=query, category=category, region=region, min_confidence=min_confidence, limit=limit
        )
        return {
            "total_factors": len(factors),
            "factors": [factor.model_dump(mode="json", by_alias=True) for factor in factors]
        }

    except ScenarioAnalysisException as e:
        raise create_http_exception(e)
    except Exception as e:
        raise _internal_error("listing factors", e)


@app.get("/factors/statistics")
async def get_factor_statistics():
    """Summary counts of the emission factor catalogue"""
    try:
        stats = default_catalogue.statistics()
        if stats["lastUpdated"] is not None:
            stats["lastUpdated"] = stats["lastUpdated"].isoformat()
        return stats

    except Exception as e:
        raise _internal_error("computing factor statistics", e)


@app.get("/factors/category/{category}")
async def get_factors_by_category(category: str):
    """Get all factors of one category"""
    try:
        factors = default_catalogue.by_category(category)
        return {
            "category": category,
            "factors": [factor.model_dump(mode="json", by_alias=True) for factor in factors]
        }

    except ScenarioAnalysisException as e:
        raise create_http_exception(e)
    except Exception as e:
        raise _internal_error(f"retrieving factors of category {category}", e)


@app.get("/factors/{factor_id}")
async def get_factor(factor_id: str):
    """Get an emission factor by ID"""
    try:
        factor = default_catalogue.get(factor_id)
        return factor.model_dump(mode="json", by_alias=True)

    except ScenarioAnalysisException as e:
        raise create_http_exception(e)
    except Exception as e:
        raise _internal_error(f"retrieving factor {factor_id}", e)
